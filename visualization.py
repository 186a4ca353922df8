# visualization.py
"""
Displays the particle buffer using Pygame.

The visualizer only reads completed ticks through `Simulation.snapshot()`.
Every change it makes goes back through the simulation's control methods
(reconfigure requests and attraction-matrix edits), never by writing the
buffer directly.

Controls:
    R       regenerate particles (next seed)
    M       randomize the attraction matrix
    Z       reset the attraction matrix to zero
    G       toggle grayscale
    Click   select a particle and log its state
    Wheel   edit the hovered attraction-matrix cell
    ESC     quit
"""
import logging
import math
from typing import List, Optional, Tuple

import numpy as np
import pygame

from constants import BACKGROUND_COLOR, DEFAULT_PARTICLE_RADIUS, FPS, VIBRANT_COLORS
from particle import Vec2

# Forward reference for type hinting to avoid circular import
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from simulation import Simulation, Snapshot

# --- Data Contracts ---
#
# particle_colors(type_count, config_colors=None, grayscale=False) -> list:
#   - Outputs: exactly type_count RGB tuples.
#
# class Visualizer:
#   - draw(self, snapshot: Snapshot, simulation: "Simulation") -> bool:
#     - Outputs: False if the user has quit, True otherwise.
#     - Side Effects: Renders particles and the matrix overlay, handles
#       Pygame events, may queue reconfiguration on the simulation.


def particle_colors(type_count: int, config_colors: Optional[list] = None,
                    grayscale: bool = False) -> List[Tuple[int, int, int]]:
    """Initializes particle colors from config, falling back to a vibrant default palette."""
    if grayscale:
        if type_count == 1:
            return [(255, 255, 255)]
        return [
            (int(80 + 175 * i / (type_count - 1)),) * 3
            for i in range(type_count)
        ]

    defaults = [tuple(VIBRANT_COLORS[i % len(VIBRANT_COLORS)]) for i in range(type_count)]
    if not config_colors:
        return defaults

    try:
        loaded = [tuple(int(c) for c in rgb[:3]) for rgb in config_colors]
    except (ValueError, TypeError) as e:
        logging.error(f"Could not parse colors from config due to invalid format: {e}. Falling back to vibrant default palette.")
        return defaults

    if len(loaded) < type_count:
        logging.warning(
            f"Config provides {len(loaded)} colors, but {type_count} are needed. "
            f"Generating the remaining {type_count - len(loaded)} using the default palette."
        )
        loaded.extend(defaults[len(loaded):])
    return loaded[:type_count]


class Visualizer:
    """
    Renders the particle buffer and a small attraction-matrix overlay.
    """
    def __init__(self, world_width: int, world_height: int, fullscreen: bool = False,
                 config_colors: Optional[list] = None):
        pygame.init()
        pygame.font.init()

        if fullscreen:
            self.screen = pygame.display.set_mode((0, 0), pygame.FULLSCREEN)
        else:
            self.screen = pygame.display.set_mode((world_width, world_height))
        self.width, self.height = self.screen.get_size()
        self.config_colors = config_colors

        pygame.display.set_caption("Particle Life")
        self.clock = pygame.time.Clock()
        self.font = pygame.font.SysFont(None, 16)

        self.matrix_pos = (10, 10)
        self.cell_size = 22
        self.hovered_cell: Optional[Tuple[int, int]] = None
        self.scroll_sensitivity = 0.05
        self.selected: Optional[int] = None

        logging.info(f"Visualizer initialized with Pygame display ({self.width}x{self.height}).")

    def _matrix_cell_at(self, pos: Tuple[int, int], type_count: int) -> Optional[Tuple[int, int]]:
        col = (pos[0] - self.matrix_pos[0]) // self.cell_size
        row = (pos[1] - self.matrix_pos[1]) // self.cell_size
        if 0 <= row < type_count and 0 <= col < type_count:
            return (row, col)
        return None

    def _handle_events(self, simulation: "Simulation") -> bool:
        config = simulation.config
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                logging.info("Quit event received. Shutting down visualizer.")
                return False

            if event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    logging.info("ESC key pressed. Shutting down visualizer.")
                    return False
                if event.key == pygame.K_r:
                    simulation.request_reconfigure(config.with_updates(seed=config.seed + 1))
                elif event.key == pygame.K_g:
                    simulation.request_reconfigure(config.with_updates(grayscale=not config.grayscale))
                elif event.key == pygame.K_m:
                    simulation.randomize_attraction_matrix()
                elif event.key == pygame.K_z:
                    simulation.reset_attraction_matrix()

            if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1 and not self.hovered_cell:
                self._inspect(simulation, event.pos)

            if event.type == pygame.MOUSEWHEEL and self.hovered_cell:
                r, c = self.hovered_cell
                old_value = float(simulation.config.attraction_matrix[r, c])
                simulation.set_attraction(r, c, old_value + event.y * self.scroll_sensitivity)
        return True

    def _inspect(self, simulation: "Simulation", screen_pos: Tuple[int, int]) -> None:
        """Selects and logs the particle under the cursor, if any."""
        config = simulation.config
        point = Vec2(
            screen_pos[0] * config.world_width / self.width,
            screen_pos[1] * config.world_height / self.height
        )
        hit = simulation.nearest_particle(point, max_distance=config.interaction_radius / 4)
        if hit is None:
            self.selected = None
            return
        self.selected, particle = hit
        speed = math.sqrt(particle.velocity.length_squared())
        logging.info(
            f"Particle {self.selected}: type {particle.particle_type}, "
            f"position ({particle.position.x:.1f}, {particle.position.y:.1f}), speed {speed:.3f}"
        )

    def _draw_selection(self, simulation: "Simulation", world_width: int, world_height: int):
        if self.selected is None or self.selected >= simulation.particles.particle_count:
            self.selected = None
            return
        position = simulation.particle(self.selected).position
        center = (int(position.x * self.width / world_width), int(position.y * self.height / world_height))
        pygame.draw.circle(self.screen, (255, 255, 255), center, 6, 1)

    def _draw_particles(self, snapshot: "Snapshot", colors: list, world_width: int, world_height: int):
        scale_x = self.width / world_width
        scale_y = self.height / world_height
        xs = (snapshot.positions[:, 0] * scale_x).astype(np.int64)
        ys = (snapshot.positions[:, 1] * scale_y).astype(np.int64)
        visible = (xs >= 0) & (xs < self.width) & (ys >= 0) & (ys < self.height)

        palette = np.array(colors, dtype=np.uint8)
        pixels = np.zeros((self.width, self.height, 3), dtype=np.uint8)
        pixels[:, :] = BACKGROUND_COLOR
        xs, ys, types = xs[visible], ys[visible], snapshot.types[visible]
        for dx in range(DEFAULT_PARTICLE_RADIUS):
            for dy in range(DEFAULT_PARTICLE_RADIUS):
                px = np.minimum(xs + dx, self.width - 1)
                py = np.minimum(ys + dy, self.height - 1)
                pixels[px, py] = palette[types]
        pygame.surfarray.blit_array(self.screen, pixels)

    def _draw_attraction_matrix(self, matrix: np.ndarray, colors: list):
        """Renders the attraction matrix and highlights the hovered cell."""
        rows, cols = matrix.shape
        for r in range(rows):
            for c in range(cols):
                value = float(matrix[r, c])
                # Green for attraction, Red for repulsion
                intensity = int(200 * min(abs(value), 1.0))
                if value > 0:
                    bg_color = (0, intensity, 0)
                elif value < 0:
                    bg_color = (intensity, 0, 0)
                else:
                    bg_color = (50, 50, 50)
                rect = pygame.Rect(
                    self.matrix_pos[0] + c * self.cell_size,
                    self.matrix_pos[1] + r * self.cell_size,
                    self.cell_size - 2, self.cell_size - 2
                )
                pygame.draw.rect(self.screen, bg_color, rect)
                if self.hovered_cell == (r, c):
                    pygame.draw.rect(self.screen, (255, 255, 0), rect, 1)
                    text = self.font.render(f"{value:.2f}", True, (255, 255, 255))
                    self.screen.blit(text, (rect.right + 4, rect.top))
            pygame.draw.circle(
                self.screen, colors[r],
                (self.matrix_pos[0] + cols * self.cell_size + 6, self.matrix_pos[1] + r * self.cell_size + 10), 4
            )

    def draw(self, snapshot: "Snapshot", simulation: "Simulation") -> bool:
        """
        Draws all particles and UI, and handles events.

        Returns:
            bool: False if the simulation should exit, True otherwise.
        """
        config = simulation.config
        self.hovered_cell = self._matrix_cell_at(pygame.mouse.get_pos(), config.type_count)
        if not self._handle_events(simulation):
            return False

        colors = particle_colors(config.type_count, self.config_colors, config.grayscale)
        self._draw_particles(snapshot, colors, config.world_width, config.world_height)
        self._draw_selection(simulation, config.world_width, config.world_height)
        self._draw_attraction_matrix(config.attraction_matrix, colors)

        pygame.display.flip()
        self.clock.tick(FPS)
        return True

    def close(self):
        """Shuts down Pygame."""
        pygame.font.quit()
        pygame.quit()
