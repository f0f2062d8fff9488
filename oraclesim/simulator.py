"""
Simulator: one tracker, one sandbox, one watcher, one waiter, wired to a router.

    sim = start_simulator()                      # in-process LocalRouter
    tx_hash, request_id = sim.router.send_request(consumer, encode_request("return encodeUint(42)"))
    sim.wait_for_request_handling(consumer, tx_hash)
    sim.stop()

With ORACLESIM_RPC_URL and ORACLESIM_ROUTER_ADDRESS set, start_simulator()
watches a deployed router instead.
"""

import logging
from typing import List, Optional

from oraclesim.config import SimulatorConfig
from oraclesim.router import LocalRouter, Router, Web3Router
from oraclesim.sandbox import HttpTransport, Sandbox
from oraclesim.secrets_bundle import SecretsProvider, static_provider
from oraclesim.tracker import LifecycleTracker
from oraclesim.waiter import CompletionWaiter
from oraclesim.watcher import EventWatcher, FailureCallback

logger = logging.getLogger(__name__)


def build_router(config: SimulatorConfig) -> Router:
    """LocalRouter unless an RPC endpoint is configured."""
    if config.uses_local_router:
        return LocalRouter(address=config.router_address)
    if not config.router_address:
        raise ValueError("ORACLESIM_ROUTER_ADDRESS is required with ORACLESIM_RPC_URL")
    return Web3Router(
        rpc_url=config.rpc_url,
        router_address=config.router_address,
        private_key=config.private_key.get_secret_value() if config.private_key else None,
        chain_id=config.chain_id,
    )


class Simulator:
    """Owns the lifecycle tracker for its lifetime; reset() clears it between runs."""

    def __init__(
        self,
        config: Optional[SimulatorConfig] = None,
        router: Optional[Router] = None,
        secrets_provider: Optional[SecretsProvider] = None,
        transport: Optional[HttpTransport] = None,
        on_failure: Optional[FailureCallback] = None,
    ):
        self.config = config if config is not None else SimulatorConfig()
        self.router = router if router is not None else build_router(self.config)
        self.tracker = LifecycleTracker()
        self.sandbox = Sandbox(
            scheme=self.config.encoding_scheme,
            http_timeout_seconds=self.config.http_timeout_seconds,
            transport=transport,
            max_result_bytes=self.config.max_result_bytes,
            max_concurrent_requests=self.config.max_concurrent_requests,
        )
        self.watcher = EventWatcher(
            router=self.router,
            tracker=self.tracker,
            sandbox=self.sandbox,
            secrets_provider=secrets_provider or static_provider(self.config.secrets_bundle()),
            poll_interval_seconds=self.config.poll_interval_seconds,
            submit_retries=self.config.submit_retries,
            submit_backoff_seconds=self.config.submit_backoff_seconds,
            report_errors=self.config.report_errors,
            on_failure=on_failure,
        )
        self.waiter = CompletionWaiter(self.router, self.tracker)

    def start(self) -> "Simulator":
        self.watcher.start()
        return self

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self.watcher.stop(timeout)

    def reset(self) -> None:
        self.tracker.reset()

    def wait_for_request_handling(
        self,
        consumer_address: str,
        tx_hash: str,
        timeout: Optional[float] = None,
        raise_on_failure: bool = False,
    ) -> List[bytes]:
        return self.waiter.wait(consumer_address, tx_hash, timeout=timeout, raise_on_failure=raise_on_failure)

    def __enter__(self) -> "Simulator":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()


def start_simulator(config: Optional[SimulatorConfig] = None, **kwargs) -> Simulator:
    """Build a Simulator (config from env when not given) and start watching."""
    sim = Simulator(config=config if config is not None else SimulatorConfig.from_env(), **kwargs)
    logger.info("Simulator watching router %s", getattr(sim.router, "address", sim.config.router_address))
    return sim.start()
