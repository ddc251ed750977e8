import math

EARTH_RADIUS_MILES = 3959
METERS_PER_MILE = 1609.34


def to_rad(degrees: float) -> float:
  return degrees * (math.pi / 180)


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
  """Great-circle distance in miles between two lat/lon points."""
  d_lat = to_rad(lat2 - lat1)
  d_lon = to_rad(lon2 - lon1)
  a = (
    math.sin(d_lat / 2) ** 2
    + math.cos(to_rad(lat1)) * math.cos(to_rad(lat2)) * math.sin(d_lon / 2) ** 2
  )
  c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
  return EARTH_RADIUS_MILES * c


def miles_to_meters(miles: float) -> float:
  return miles * METERS_PER_MILE


def meters_to_miles(meters: float) -> float:
  return meters / METERS_PER_MILE
