"""
Dance style library. Users pick a style; we build the actual video prompt.
"""

from typing import Optional

from ..errors import ValidationError

DANCE_STYLES = {
    "macarena": {
        "id": "macarena",
        "name": "Macarena",
        "description": "Classic 90s dance with coordinated arm movements",
        "motion": "performing the Macarena with coordinated arm movements and hip sways",
        "audio": "macarena-10s.mp3",
    },
    "salsa": {
        "id": "salsa",
        "name": "Salsa",
        "description": "Smooth, rhythmic Latin dance with graceful turns",
        "motion": "dancing salsa with smooth, rhythmic movements and graceful turns",
        "audio": "salsa-10s.mp3",
    },
    "hip_hop": {
        "id": "hip_hop",
        "name": "Hip Hop",
        "description": "Energetic street dance with sharp moves",
        "motion": "performing hip hop dance with energetic moves and sharp transitions",
        "audio": "hip-hop-10s.mp3",
    },
    "robot": {
        "id": "robot",
        "name": "Robot",
        "description": "Mechanical dance with staccato movements",
        "motion": "doing the robot dance with mechanical, staccato movements",
        "audio": "robot-10s.mp3",
    },
    "ballet": {
        "id": "ballet",
        "name": "Ballet",
        "description": "Elegant and graceful classical dance",
        "motion": "performing ballet with elegant, graceful movements and poise",
        "audio": "ballet-10s.mp3",
    },
    "disco": {
        "id": "disco",
        "name": "Disco",
        "description": "Groovy 70s dance with funky style",
        "motion": "dancing disco with groovy moves and funky style",
        "audio": "disco-10s.mp3",
    },
    "breakdance": {
        "id": "breakdance",
        "name": "Breakdance",
        "description": "Dynamic floor movements with spins and freezes",
        "motion": "breakdancing with spins, freezes, and dynamic floor movements",
        "audio": "breakdance-10s.mp3",
    },
    "waltz": {
        "id": "waltz",
        "name": "Waltz",
        "description": "Smooth, flowing dance in 3/4 time",
        "motion": "waltzing with smooth, flowing movements in 3/4 time",
        "audio": "waltz-10s.mp3",
    },
    "tango": {
        "id": "tango",
        "name": "Tango",
        "description": "Dramatic and passionate dance",
        "motion": "dancing the tango with dramatic, passionate movements",
        "audio": "tango-10s.mp3",
    },
    "cha_cha": {
        "id": "cha_cha",
        "name": "Cha Cha",
        "description": "Quick, rhythmic Latin dance steps",
        "motion": "performing the cha-cha with quick, rhythmic steps",
        "audio": "cha-cha-10s.mp3",
    },
}


def resolve_style(style: str) -> dict:
    """Look a style up by id or display name ("Hip Hop" -> hip_hop)."""
    if not style:
        raise ValidationError("danceStyle is required")
    key = style.strip().lower()
    if key in DANCE_STYLES:
        return DANCE_STYLES[key]
    for preset in DANCE_STYLES.values():
        if preset["name"].lower() == key or preset["id"] == key.replace(" ", "_"):
            return preset
    raise ValidationError(f"Unknown dance style: {style}. Available: {list(DANCE_STYLES.keys())}")


def build_prompt(style: str, pet_description: Optional[str] = None) -> str:
    preset = resolve_style(style)
    pet = f"A pet ({pet_description.strip()})" if pet_description and pet_description.strip() else "A pet"
    return (
        f"{pet} {preset['motion']}. The pet's face, features, and identity are clearly preserved "
        f"throughout the video. The dance movements are smooth, natural, and match the "
        f"{preset['name']} style accurately. Professional video quality, well-lit environment, "
        f"stable camera, 8-10 second duration."
    )


def audio_url_for(style: str, audio_base_url: str) -> Optional[str]:
    """Public soundtrack URL for a style, or None when no audio host is configured."""
    if not audio_base_url:
        return None
    preset = resolve_style(style)
    return f"{audio_base_url.rstrip('/')}/audio/{preset['audio']}"


def list_styles() -> list[dict]:
    return [
        {"id": p["id"], "name": p["name"], "description": p["description"]}
        for p in DANCE_STYLES.values()
    ]
