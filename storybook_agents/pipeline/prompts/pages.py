from __future__ import annotations

PAGE_PROMPT_VERSION = "v2"


def page_prompt(story: str, *, page_count: int, target_audience: str, character_list: str) -> tuple[str, str]:
    system = (
        f"You break a story into illustrated pages for a {target_audience}'s book.\n"
        "Each page needs its narrative text, the specific ACTION happening, the EMOTION shown, "
        "an imageDescription of that moment, the characters present and the setting.\n"
        "Keep hair colours, outfits and features identical on every page.\n\n"
        "CHARACTER REFERENCE (use these exact visual descriptions):\n"
        f"{character_list}\n\n"
        "Return only a JSON object:\n"
        f'{{"title": "", "summary": "", "totalPages": {page_count}, "pages": [{{"pageNumber": 1, '
        '"text": "", "action": "", "emotion": "", "imageDescription": "", '
        '"characters": [""], "scene": "", "mood": ""}]}'
    )
    user = (
        f"Create exactly {page_count} illustrated pages for the following story:\n\n{story}\n\n"
        "Every illustration must capture a specific action moment, not characters standing still."
    )
    return system, user
