from __future__ import annotations

from dataclasses import dataclass

from geometry import Point

MIN_SCALE = 0.1
MAX_SCALE = 3.0


def clamp_scale(value: float) -> float:
    return max(MIN_SCALE, min(MAX_SCALE, value))


@dataclass
class ViewTransform:
    """Pan offset plus uniform scale between screen pixels and model space."""

    pan_x: float = 0.0
    pan_y: float = 0.0
    scale: float = 1.0

    @property
    def pan(self) -> Point:
        return Point(self.pan_x, self.pan_y)

    def to_model(self, screen: Point) -> Point:
        return Point((screen.x - self.pan_x) / self.scale, (screen.y - self.pan_y) / self.scale)

    def to_screen(self, model: Point) -> Point:
        return Point(model.x * self.scale + self.pan_x, model.y * self.scale + self.pan_y)

    def zoom_at(self, anchor: Point, factor: float) -> None:
        """Zoom by ``factor`` keeping ``anchor`` over the same model point."""
        new_scale = clamp_scale(self.scale * factor)
        ratio = new_scale / self.scale
        self.pan_x = anchor.x - (anchor.x - self.pan_x) * ratio
        self.pan_y = anchor.y - (anchor.y - self.pan_y) * ratio
        self.scale = new_scale

    def pan_by(self, delta: Point) -> None:
        self.pan_x += delta.x
        self.pan_y += delta.y

    def reset(self) -> None:
        self.pan_x = 0.0
        self.pan_y = 0.0
        self.scale = 1.0
