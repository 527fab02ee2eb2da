# In: trajectory_stack/controllers/controller_node.py

import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional

import numpy as np

from .trajectory_controller import TrajectoryController
from .trajectory_noise import make_generator
from .trajectory_types import (
    ControllerConfig,
    ControllerFault,
    ControllerResult,
    OptimizationResult,
    Path,
    RobotState,
    VelocityCommand,
)


class NodeState(Enum):
    IDLE = "idle"        # path or state missing
    READY = "ready"      # both present, waiting for a trigger
    CYCLING = "cycling"  # a control cycle is running


class ControllerNode:
    """
    Event driven wrapper around TrajectoryController.

    Path and pose sources push updates through on_path() / on_state().
    Each update replaces the latest value (newest wins, nothing is queued)
    and triggers one control cycle once both inputs are known. Commands and
    the optional diagnostic bundle leave through callbacks, so the node does
    not depend on any messaging system.
    """

    def __init__(
        self,
        config: ControllerConfig,
        command_callback: Optional[Callable[[VelocityCommand], None]] = None,
        debug_callback: Optional[Callable[[OptimizationResult], None]] = None,
        fault_callback: Optional[Callable[[ControllerFault], None]] = None,
        warn_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        controller: Optional[TrajectoryController] = None,
    ):
        """
        Args:
            config: controller configuration (validated on construction)
            command_callback: receives the command of every completed cycle
            debug_callback: receives the OptimizationResult when config.debug is on
            fault_callback: receives a ControllerFault when a cycle is skipped
            warn_interval: minimum seconds between repeated missing-input warnings
            clock: monotonic time source for the warning throttle
            controller: pre-built controller (e.g. with a custom motion model)
        """
        self.config = config
        self.controller = controller if controller is not None else TrajectoryController(config)
        self.command_callback = command_callback
        self.debug_callback = debug_callback
        self.fault_callback = fault_callback
        self.warn_interval = warn_interval
        self._clock = clock

        # Latest values, guarded by _lock
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._state: Optional[RobotState] = None
        self._active_cycles = 0
        self._cycle_index = 0

        self.last_command: Optional[VelocityCommand] = None
        self.last_result: Optional[ControllerResult] = None
        self.last_fault: Optional[ControllerFault] = None
        self.fault_count = 0
        self.cycle_count = 0

        self._last_warning: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def on_path(self, path: Path) -> Optional[VelocityCommand]:
        """New reference path (full replace)"""
        with self._lock:
            self._path = path
        return self.spin_once()

    def on_state(self, state: RobotState) -> Optional[VelocityCommand]:
        """New pose/twist estimate"""
        with self._lock:
            self._state = state
        return self.spin_once()

    def on_obstacles(self, obstacle_cost: Optional[np.ndarray]) -> Optional[VelocityCommand]:
        """
        New obstacle cost layer ([rows, cols] in the distance field frame),
        None clears it. Applied from this cycle on.
        """
        self.controller.set_obstacle_cost(obstacle_cost)
        return self.spin_once()

    @property
    def state(self) -> NodeState:
        with self._lock:
            if self._active_cycles > 0:
                return NodeState.CYCLING
            if self._path is None or self._state is None:
                return NodeState.IDLE
            return NodeState.READY

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    def spin_once(self) -> Optional[VelocityCommand]:
        """
        Run one cycle on a snapshot of the latest inputs.

        Returns the emitted command, or None when the cycle was a no-op
        (missing input) or was skipped because of a fault.
        """
        with self._lock:
            path, state = self._path, self._state
            if path is None or state is None:
                missing = "path" if path is None else "state"
            else:
                missing = None
                self._active_cycles += 1
                cycle_index = self._cycle_index
                self._cycle_index += 1

        if missing is not None:
            self._warn_throttled(missing, f"{missing.capitalize()} is null")
            return None

        try:
            return self._run_cycle(path, state, cycle_index)
        finally:
            with self._lock:
                self._active_cycles -= 1

    def _run_cycle(self, path: Path, state: RobotState, cycle_index: int) -> Optional[VelocityCommand]:
        if not state.is_finite():
            self._report_fault(ControllerFault.INVALID_STATE)
            return None
        if path.is_degenerate():
            self._report_fault(ControllerFault.DEGENERATE_PATH)
            return None

        seed = None if self.config.seed is None else self.config.seed + cycle_index
        generator = make_generator(seed, self.config.device)

        result = self.controller.get_controls(path, state, generator)

        if not result.command.is_finite():
            self._report_fault(ControllerFault.NON_FINITE_COMMAND)
            return None

        with self._lock:
            self.last_command = result.command
            self.last_result = result
            self.cycle_count += 1

        if self.command_callback is not None:
            self.command_callback(result.command)

        if self.config.debug and self.debug_callback is not None and result.optimization_result is not None:
            self.debug_callback(result.optimization_result)

        return result.command

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def _report_fault(self, fault: ControllerFault):
        with self._lock:
            self.last_fault = fault
            self.fault_count += 1

        self._warn_throttled(fault.name, f"Skipping cycle: {fault.value}")

        if self.fault_callback is not None:
            self.fault_callback(fault)

    def _warn_throttled(self, key: str, message: str):
        """Print a warning at most once per warn_interval for each key"""
        now = self._clock()
        with self._lock:
            last = self._last_warning.get(key)
            if last is not None and now - last < self.warn_interval:
                return
            self._last_warning[key] = now
        print(f"WARNING: ControllerNode: {message}")

    def reset(self):
        """Forget inputs, warm start and obstacles; the next cycle is seeded like a fresh node"""
        with self._lock:
            self._path = None
            self._state = None
            self._cycle_index = 0
            self._last_warning.clear()
            self.last_command = None
            self.last_result = None
            self.last_fault = None
        self.controller.reset()
