from .overlay import Visualizer, draw_detection, draw_quad, to_rgb8

__all__ = ["Visualizer", "draw_detection", "draw_quad", "to_rgb8"]
