from __future__ import annotations

from storybook_agents.llm.json_utils import dumps_sorted

CHARACTER_PROMPT_VERSION = "v2"

_IDENTITY_SHAPE = (
    '"visualIdentity": {"species": "", "ageAppearance": "", "gender": "", "bodyType": "", '
    '"skinTone": "", "hairColor": "", "hairStyle": "", "eyeColor": "", '
    '"distinctiveFeatures": [], "primaryOutfit": {"top": "", "bottom": "", "footwear": "", "accessories": []}}'
)


def character_prompt(story: str) -> tuple[str, str]:
    system = (
        "You extract the characters of a story and describe how each one looks.\n"
        "For every character give a role (main, supporting or minor), a short description, "
        "an avatarPrompt describing a SOLO portrait (no background, no other characters), "
        "a structured visualIdentity and a consistencyTag of at most 20 words that names the "
        "features which must never change between illustrations.\n"
        "Use the same colour words everywhere.\n\n"
        "Return only a JSON object:\n"
        '{"characters": [{"name": "", "role": "main|supporting|minor", "description": "", '
        f'"avatarPrompt": "", {_IDENTITY_SHAPE}, "consistencyTag": ""}}]}}'
    )
    user = f"Extract all characters from the following story:\n\n{story}"
    return system, user


def refine_prompt(character: dict, instructions: str) -> tuple[str, str]:
    system = (
        "You refine one character's visual description for image generation.\n"
        "Make the avatarPrompt more specific while keeping the established traits, "
        "and update visualIdentity and consistencyTag to match.\n\n"
        "Return only a JSON object:\n"
        '{"description": "", "avatarPrompt": "", '
        f"{_IDENTITY_SHAPE}, "
        '"consistencyTag": ""}'
    )
    user = f"Original character:\n{dumps_sorted(character)}\n\nAdditional requirements:\n{instructions}"
    return system, user
