from typing import List, Sequence

from dateai_service.geo import calculate_distance
from dateai_service.models import Event


def _leg(a: Event, b: Event) -> float:
  return calculate_distance(a.location.latitude, a.location.longitude, b.location.latitude, b.location.longitude)


def optimize_route(stops: Sequence[Event]) -> List[Event]:
  """Nearest-neighbor reordering that keeps the first stop fixed.

  Greedy, so not guaranteed to find the shortest tour.
  """
  if len(stops) < 2:
    return list(stops)

  route = [stops[0]]
  remaining = list(stops[1:])
  while remaining:
    current = route[-1]
    nearest = min(remaining, key=lambda stop: _leg(current, stop))
    route.append(nearest)
    remaining.remove(nearest)
  return route


def total_route_distance(stops: Sequence[Event]) -> float:
  return sum(_leg(stops[i], stops[i + 1]) for i in range(len(stops) - 1))
