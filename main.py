# main.py
"""
Entry point: `python main.py [config.json]`.

Loads the JSON config, configures logging, builds a Simulation (and a
pygame window unless run_control.headless is set), steps it until
run_control.max_steps or the window closes, then logs a cProfile report
if run_control.profile is on.
"""
import cProfile
import io
import logging
import pstats
import sys
import time
from typing import Any, Dict, Optional

from utils import check_run_control, describe_particles, load_config, setup_logging


def run_loop(sim, visualizer, run_params: Dict[str, Any]) -> int:
    """
    Steps the simulation until max_steps or until the window is closed.

    Returns:
        int: Number of completed ticks.
    """
    log_throttle = run_params.get('log_throttle_steps', 100)
    max_steps = run_params.get('max_steps', 5000)
    use_frame_dt = run_params.get('use_frame_dt', False)

    ticks = 0
    last_frame = time.perf_counter()
    while ticks < max_steps:
        now = time.perf_counter()
        sim.step(now - last_frame if use_frame_dt else None)
        last_frame = now
        ticks += 1

        if visualizer is not None and not visualizer.draw(sim.snapshot(), sim):
            break

        # Per-tick logging is throttled.
        if ticks % log_throttle == 0:
            metrics = describe_particles(sim.snapshot().velocities)
            logging.info(f"Tick {ticks}/{max_steps}")
            logging.debug(
                f"Tick {ticks} | Mean speed: {metrics['mean_speed']:.4f} "
                f"| Max speed: {metrics['max_speed']:.4f}"
            )
    else:
        logging.info(f"Reached max_steps ({max_steps}). Stopping simulation.")
    return ticks


def log_profile(profiler: cProfile.Profile, limit: int = 20) -> None:
    report = io.StringIO()
    pstats.Stats(profiler, stream=report).sort_stats('cumtime').print_stats(limit)
    logging.info(f"--- Performance Profile ---\n{report.getvalue()}")


def main(config_path: str = 'config.json') -> int:
    # Logging is not configured until the config is read, so a load
    # failure can only be printed.
    try:
        config = load_config(config_path)
    except (OSError, ValueError) as e:
        print(f"FATAL: Could not load {config_path}. Error: {e}")
        return 1

    try:
        setup_logging(config)
    except ValueError as e:
        print(f"FATAL: Invalid logging configuration in {config_path}. Error: {e}")
        return 1
    logging.info("--- Particle Life Simulation Starting ---")

    from config import SimulationConfig
    from errors import ConfigInvalid
    from simulation import Simulation

    try:
        sim_config = SimulationConfig.from_params(config['simulation_parameters'])
    except (ConfigInvalid, TypeError) as e:
        logging.critical(f"Invalid simulation parameters: {e}")
        return 1

    run_params = config['run_control']
    vis_params = config['visualization']
    try:
        check_run_control(run_params)
    except ValueError:
        return 1

    sim = Simulation(sim_config)
    visualizer = None
    profiler: Optional[cProfile.Profile] = None
    try:
        if not run_params.get('headless', False):
            from visualization import Visualizer
            visualizer = Visualizer(
                sim_config.world_width, sim_config.world_height,
                fullscreen=vis_params.get('fullscreen', False),
                config_colors=vis_params.get('particle_colors')
            )
        if run_params.get('profile', True):
            profiler = cProfile.Profile()
            profiler.enable()

        ticks = run_loop(sim, visualizer, run_params)
        logging.info(f"Simulation loop finished after {ticks} ticks.")
    finally:
        if profiler is not None:
            profiler.disable()
        if visualizer is not None:
            visualizer.close()
        sim.close()

    if profiler is not None:
        log_profile(profiler)
    logging.info("--- Particle Life Simulation Shutting Down ---")
    return 0


if __name__ == "__main__":
    sys.exit(main(*sys.argv[1:2]))
