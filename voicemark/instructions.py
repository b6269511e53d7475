"""Prompt instructions that teach the model the marker grammar."""

from voicemark.constants import DEFAULT_CHARACTER, DEFAULT_VOICE_FILE, VOICE_FILE_SUFFIX
from voicemark.voices import VoiceLibrary

INSTRUCTIONS_TEMPLATE = """
-----

!!! IMPORTANT TTS INSTRUCTIONS !!!

The following are instructions for inserting TTS markers into your responses. You will ALWAYS insert these TTS markers in the text.
Read them VERY carefully and follow them to the letter:

AVAILABLE CHARACTERS AND VOICE FILES:
{character_list}

MARKER EXPLANATION:
- §n|voiceFile.mp3|emotionValues§ = Narrator speaking
- §a§ = Action description (Another narrator but without the emotion values)
- §c:CharacterName|voiceFile.mp3|emotionValues§ = Character speaking

EMOTION VALUES EXPLANATION:
- e1: Happiness (0.0-1.0)
- e2: Sadness (0.0-1.0)
- e3: Disgust (0.0-1.0)
- e4: Fear (0.0-1.0)
- e5: Surprise (0.0-1.0)
- e6: Anger (0.0-1.0)
- e7: Other (0.0-1.0)
- e8: Neutral (0.0-1.0)

EXAMPLE:
*§n|narrator.mp3|e1:0.1,e8:0.9§The sun was setting over the quiet village as the travelers approached the inn.*

*§a§A young woman with golden hair steps forward, her cloak billowing in the evening breeze.*

"§c:Elara|female_young.mp3|e1:0.7,e5:0.3§Welcome to Rivermist Inn!" *§a§she says with a warm smile, gesturing toward the entrance.* "§c:Elara§We have rooms available if you're looking to stay the night."

*§a§An older man appears in the doorway, wiping his hands on his apron.*

"§c:Innkeeper|male_gruff.mp3|e6:0.3,e8:0.7§Elara! Don't just stand there, help our guests with their bags!" *§n|e2:0.2,e8:0.8§The night promises to be interesting as you sense tension between the two.*

When inserting these markers:
- Place them exactly where the narration, action, or dialogue begins
- Use the complete format for the first appearance of each character
- For subsequent appearances, you can use shorter versions like §c:CharacterName§ if the voice and emotions remain the same
- Don't place markers inside quotes unless the marker itself is for dialogue
- Use appropriate emotion values based on the context
- If a character in a marker is not found from the given list above, it will default to Narrator + default.mp3
- If a given voice file is not found from the given list above / doesn't correspond with the character, it will default to default.mp3
- If the only available character is Narrator, just use it for everything

-----
"""


def character_list(library: VoiceLibrary) -> str:
    """One line per voice with samples: ``Name - default.mp3, angry.mp3``."""
    lines = []
    for voice, variants in library.available_variants():
        files = ", ".join(f"{name}{VOICE_FILE_SUFFIX}" for name in variants)
        lines.append(f"{voice.name} - {files}")
    return "\n".join(lines)


def build_instructions(library: VoiceLibrary) -> str:
    listing = character_list(library) or f"{DEFAULT_CHARACTER} - {DEFAULT_VOICE_FILE}"
    return INSTRUCTIONS_TEMPLATE.format(character_list=listing)


def inject_instructions(chat: list[dict], library: VoiceLibrary) -> None:
    """Append the instructions to an outbound chat prompt as a user message."""
    chat.append({"role": "user", "content": build_instructions(library)})
