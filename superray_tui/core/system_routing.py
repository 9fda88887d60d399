"""
System-wide routing through a TUN device, modelled as a table of steps

Enable runs the steps in order. Each step carries a policy deciding what a
failure means:

    ABORT     roll back every completed step (best-effort) and raise
    DEGRADE   keep what is already up, report a degraded success
    CONTINUE  log and move on (used by teardown)
"""

import threading
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, List, Optional

from .errors import PermissionDenied
from .types import InterfaceSpec
from ..engine.base import ProxyEngine
from ..utils.system_check import is_root

logger = logging.getLogger(__name__)


class StepPolicy(Enum):
    ABORT = auto()
    DEGRADE = auto()
    CONTINUE = auto()


class RoutingOutcome(Enum):
    ENABLED = auto()
    DEGRADED = auto()


@dataclass
class RoutingContext:
    """Values flowing between steps of one enable/disable run"""
    session_handle: Optional[str] = None
    exclude_address: Optional[str] = None
    interface: Optional[str] = None


@dataclass
class RoutingStep:
    name: str
    apply: Callable[[RoutingContext], None]
    policy: StepPolicy
    revert: Optional[Callable[[RoutingContext], None]] = None


class SystemRouting:
    """Enable/disable system-wide routing with rollback"""

    def __init__(self, engine: ProxyEngine,
                 spec: Optional[InterfaceSpec] = None,
                 privilege_check: Callable[[], bool] = is_root):
        self.engine = engine
        self.spec = spec or InterfaceSpec()
        self.privilege_check = privilege_check
        self._lock = threading.RLock()
        self._context: Optional[RoutingContext] = None
        self.routes_installed = False

    @property
    def active(self) -> bool:
        with self._lock:
            return self._context is not None

    # Steps

    def _check_privilege(self, ctx: RoutingContext):
        if not self.privilege_check():
            raise PermissionDenied(
                "System-wide routing requires root privileges "
                "(run with: sudo superray-tui)"
            )

    def _create_interface(self, ctx: RoutingContext):
        logger.info(
            f"Creating {self.spec.name}: MTU={self.spec.mtu}, "
            f"Addr={','.join(self.spec.addresses)}"
        )
        ctx.interface = self.engine.create_interface(self.spec)

    def _close_interface(self, ctx: RoutingContext):
        if ctx.interface:
            self.engine.close_interface(ctx.interface)
            ctx.interface = None

    def _attach_interface(self, ctx: RoutingContext):
        self.engine.attach_interface(
            ctx.interface, ctx.session_handle, self.spec.outbound_tag
        )
        logger.info("TUN stack started - traffic forwarding active")

    def _install_routes(self, ctx: RoutingContext):
        self.engine.install_routes(ctx.interface, ctx.exclude_address)
        self.routes_installed = True
        logger.info("Routes configured - all traffic now goes through the proxy")

    def _remove_routes(self, ctx: RoutingContext):
        self.routes_installed = False
        if ctx.interface:
            self.engine.remove_routes(ctx.interface)

    def enable_steps(self) -> List[RoutingStep]:
        return [
            RoutingStep('privilege', self._check_privilege, StepPolicy.ABORT),
            RoutingStep('create_interface', self._create_interface,
                        StepPolicy.ABORT, revert=self._close_interface),
            # Closing the interface also tears down the attachment
            RoutingStep('attach_interface', self._attach_interface,
                        StepPolicy.ABORT),
            RoutingStep('install_routes', self._install_routes,
                        StepPolicy.DEGRADE, revert=self._remove_routes),
        ]

    def disable_steps(self) -> List[RoutingStep]:
        return [
            RoutingStep('remove_routes', self._remove_routes, StepPolicy.CONTINUE),
            RoutingStep('close_interface', self._close_interface, StepPolicy.CONTINUE),
        ]

    # Sequences

    def enable(self, session_handle: str, exclude_address: str) -> RoutingOutcome:
        """
        Run the enable sequence

        Returns:
            RoutingOutcome.ENABLED, or DEGRADED when routes could not be
            installed but the interface is forwarding

        Raises:
            PermissionDenied: not running with root privileges
            EngineError: interface creation or attachment failed (rolled back)
        """
        with self._lock:
            if self._context is not None:
                logger.debug("System routing already active, resetting first")
                self._run_disable(self._context)

            ctx = RoutingContext(
                session_handle=session_handle,
                exclude_address=exclude_address,
            )
            completed: List[RoutingStep] = []
            outcome = RoutingOutcome.ENABLED

            for step in self.enable_steps():
                try:
                    step.apply(ctx)
                except Exception as e:
                    if step.policy == StepPolicy.DEGRADE:
                        logger.warning(f"Route setup warning: {e}")
                        logger.warning(
                            "TUN device works, but routes may need manual configuration"
                        )
                        outcome = RoutingOutcome.DEGRADED
                        continue
                    if step.policy == StepPolicy.CONTINUE:
                        logger.warning(f"Routing step '{step.name}' failed: {e}")
                        continue

                    logger.error(f"Routing step '{step.name}' failed: {e}")
                    self._rollback(completed, ctx)
                    raise
                completed.append(step)

            self._context = ctx
            return outcome

    def disable(self):
        """Tear down routes and the interface; never raises"""
        with self._lock:
            ctx = self._context
            self._context = None
            if ctx is None:
                return
            self._run_disable(ctx)
            logger.info("TUN device closed, routes restored")

    def cleanup_residual(self):
        """Idempotent sweep of any interface the engine may still hold"""
        with self._lock:
            if self._context is not None:
                self._run_disable(self._context)
                self._context = None
            try:
                self.engine.close_all_interfaces()
            except Exception as e:
                logger.debug(f"Residual interface cleanup failed: {e}")

    def _run_disable(self, ctx: RoutingContext):
        for step in self.disable_steps():
            try:
                step.apply(ctx)
            except Exception as e:
                logger.warning(f"Routing teardown step '{step.name}' failed: {e}")

    def _rollback(self, completed: List[RoutingStep], ctx: RoutingContext):
        for step in reversed(completed):
            if step.revert is None:
                continue
            try:
                step.revert(ctx)
            except Exception as e:
                logger.debug(f"Rollback of '{step.name}' failed: {e}")
