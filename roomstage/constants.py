"""Room types and furniture styles accepted by the staging engine."""

from typing import Dict

# id -> display label
ROOM_TYPES: Dict[str, str] = {
    "living-room": "Living Room",
    "bedroom-master": "Master Bedroom",
    "bedroom-guest": "Guest Bedroom",
    "bedroom-kids": "Kids Bedroom",
    "dining-room": "Dining Room",
    "kitchen": "Kitchen",
    "home-office": "Home Office",
    "bathroom": "Bathroom",
    "outdoor-patio": "Outdoor/Patio",
}

# id -> (label, description)
FURNITURE_STYLES: Dict[str, tuple] = {
    "modern": ("Modern", "Clean lines, neutral colors, sleek furniture"),
    "traditional": ("Traditional", "Elegant, timeless pieces with rich woods"),
    "minimalist": ("Minimalist", "Simple, functional, uncluttered spaces"),
    "mid-century": ("Mid-Century", "Retro-inspired with organic curves"),
    "scandinavian": ("Scandinavian", "Light woods, white walls, cozy textiles"),
    "industrial": ("Industrial", "Raw materials, exposed elements, urban feel"),
    "coastal": ("Coastal", "Light, airy, ocean-inspired colors"),
    "farmhouse": ("Farmhouse", "Warm, inviting, natural materials"),
    "luxury": ("Luxury", "Opulent, sophisticated, high-end finishes"),
}

BEDROOM_TYPES = ("bedroom-master", "bedroom-guest", "bedroom-kids")

ACCEPTED_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")


def room_label(room_type: str) -> str:
    return ROOM_TYPES.get(room_type, room_type)


def style_label(style: str) -> str:
    return FURNITURE_STYLES.get(style, (style, ""))[0]


def style_description(style: str) -> str:
    return FURNITURE_STYLES.get(style, (style, ""))[1]
