from typing import Dict, List, Optional, Tuple

UNIFIED_CATEGORIES: Dict[str, str] = {
  "all": "All Events",
  "live-music": "Live Music",
  "comedy": "Comedy",
  "sports-games": "Sports & Games",
  "performing-arts": "Performing Arts",
  "food-drink": "Food & Drink",
  "cultural": "Cultural",
  "social": "Social",
  "educational": "Educational",
  "outdoor": "Outdoor",
  "special": "Special Events",
}

EVENT_CATEGORIES = [key for key in UNIFIED_CATEGORIES if key != "all"]

DEFAULT_CATEGORY = "special"

# Checked in order; the first category with a matching keyword wins.
_CATEGORY_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
  ("live-music", ("concert", "music")),
  ("comedy", ("comedy",)),
  ("sports-games", ("sport",)),
  ("performing-arts", ("art", "theatre", "theater", "performance")),
  ("food-drink", ("food", "dining")),
  ("cultural", ("culture", "cultural")),
  ("educational", ("education", "workshop")),
  ("outdoor", ("outdoor",)),
]


def normalize_category(value: Optional[str]) -> str:
  """Return the canonical category for value, or 'special' when unknown."""
  category = (value or "").strip().lower()
  if category in EVENT_CATEGORIES:
    return category
  return DEFAULT_CATEGORY


def classify_category(*texts: Optional[str]) -> str:
  """Keyword classifier over free text (title, description, provider category)."""
  blob = " ".join(text.lower() for text in texts if text)
  if not blob:
    return DEFAULT_CATEGORY
  for category, keywords in _CATEGORY_KEYWORDS:
    if any(keyword in blob for keyword in keywords):
      return category
  return DEFAULT_CATEGORY
