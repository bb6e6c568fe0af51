"""
Catalog of loop shapes. Each template is an ordered list of (bearing, radius multiplier)
pairs; waypoints are projected from the start at base_radius * multiplier.
"""

import random
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .geometry import project
from .models import Coordinate


@dataclass(frozen=True)
class LoopTemplate:
    name: str
    legs: Tuple[Tuple[float, float], ...]  # (bearing_deg, radius_multiplier)


def _polygon(sides: int, mult: float, offset: float = 0.0) -> Tuple[Tuple[float, float], ...]:
    step = 360.0 / sides
    return tuple(((offset + i * step) % 360.0, mult) for i in range(sides))


TEMPLATES: Tuple[LoopTemplate, ...] = (
    LoopTemplate("North Loop", ((330, 1.2), (30, 1.4), (90, 0.8))),
    LoopTemplate("South Loop", ((150, 1.2), (210, 1.4), (270, 0.8))),
    LoopTemplate("East Loop", ((45, 1.2), (90, 1.4), (135, 0.8))),
    LoopTemplate("West Loop", ((225, 1.2), (270, 1.4), (315, 0.8))),
    LoopTemplate("Clockwise Square", _polygon(4, 1.4)),
    LoopTemplate("Counter-clockwise Square", ((270, 1.4), (180, 1.4), (90, 1.4), (0, 1.4))),
    LoopTemplate("NE-SW Diagonal", ((45, 1.8), (225, 1.8))),
    LoopTemplate("NW-SE Diagonal", ((315, 1.8), (135, 1.8))),
    LoopTemplate("Pentagon", _polygon(5, 1.3)),
    LoopTemplate("Figure-8 NS", ((0, 1.0), (45, 0.5), (180, 1.0), (225, 0.5))),
    LoopTemplate("Figure-8 EW", ((90, 1.0), (135, 0.5), (270, 1.0), (315, 0.5))),
    LoopTemplate("North Reach", ((350, 2.0), (10, 1.5), (30, 0.8))),
    LoopTemplate("South Reach", ((170, 2.0), (190, 1.5), (210, 0.8))),
    LoopTemplate("Hexagon", _polygon(6, 1.2)),
    LoopTemplate("East Heavy", ((30, 0.8), (90, 1.8), (150, 0.8))),
    LoopTemplate("West Heavy", ((210, 0.8), (270, 1.8), (330, 0.8))),
    LoopTemplate("Triangle North", ((0, 1.6), (120, 1.2), (240, 1.2))),
    LoopTemplate("Triangle South", ((180, 1.6), (60, 1.2), (300, 1.2))),
    LoopTemplate("Octagon Circuit", _polygon(8, 1.1)),
    LoopTemplate("Large Octagon", _polygon(8, 1.5)),
    LoopTemplate(
        "North-South Circuit",
        ((0, 1.4), (60, 0.8), (120, 0.8), (180, 1.4), (240, 0.8), (300, 0.8)),
    ),
    LoopTemplate(
        "East-West Circuit",
        ((90, 1.4), (30, 0.8), (330, 0.8), (270, 1.4), (210, 0.8), (150, 0.8)),
    ),
    LoopTemplate(
        "Cloverleaf",
        ((0, 1.5), (45, 0.6), (90, 1.5), (135, 0.6), (180, 1.5), (225, 0.6), (270, 1.5), (315, 0.6)),
    ),
    LoopTemplate(
        "Diamond Extended",
        ((0, 1.8), (45, 0.9), (90, 1.8), (135, 0.9), (180, 1.8), (225, 0.9), (270, 1.8), (315, 0.9)),
    ),
    LoopTemplate("Wide North Arc", ((315, 2.0), (0, 2.2), (45, 2.0))),
    LoopTemplate("Wide South Arc", ((135, 2.0), (180, 2.2), (225, 2.0))),
    LoopTemplate("Wide East Arc", ((45, 2.0), (90, 2.2), (135, 2.0))),
    LoopTemplate("Wide West Arc", ((225, 2.0), (270, 2.2), (315, 2.0))),
    LoopTemplate("Expanded Square", _polygon(4, 2.0)),
    LoopTemplate("Large Pentagon", _polygon(5, 1.8)),
    LoopTemplate("Scenic Triangle", ((30, 2.2), (150, 2.2), (270, 2.2))),
    LoopTemplate("Explorer Loop", ((20, 1.6), (100, 1.4), (200, 1.6), (280, 1.4))),
)


def get_template(name: str) -> LoopTemplate:
    for t in TEMPLATES:
        if t.name == name:
            return t
    raise KeyError(name)


def generate_waypoints(start: Coordinate, base_radius_km: float, template: LoopTemplate) -> List[Coordinate]:
    """Project each (bearing, multiplier) leg of template from start."""
    return [project(start, bearing, base_radius_km * mult) for bearing, mult in template.legs]


def shuffled_templates(rng: Optional[random.Random] = None) -> List[LoopTemplate]:
    rng = rng or random.Random()
    out = list(TEMPLATES)
    rng.shuffle(out)
    return out
