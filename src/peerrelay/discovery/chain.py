"""Discovery chain — first strategy to find peers wins.

Learn: Nothing here is cached. Replicas scale up and down, so every
discover_peers() call re-runs the strategies against the live cluster.
Only the environment snapshot and the credentials are fixed at startup.

If no strategy's preconditions hold, the answer is
Unavailable(NotInClusterEnvironment) without any network I/O. That is
what local development sees, and it is not an error.
"""

from typing import Optional

import structlog

from peerrelay.config import Settings
from peerrelay.discovery import credentials as credential_files
from peerrelay.discovery import results
from peerrelay.discovery.credentials import CredentialLoadError
from peerrelay.discovery.environment import ClusterEnvironment
from peerrelay.discovery.results import DiscoveryResult, Found, Unavailable
from peerrelay.discovery.strategies import Credentials, DiscoveryStrategy, default_strategies

logger = structlog.get_logger()


class DiscoveryChain:
    def __init__(
        self,
        cluster: ClusterEnvironment,
        credentials: Credentials,
        strategies: Optional[list[DiscoveryStrategy]] = None,
    ):
        self.cluster = cluster
        self.credentials = credentials
        self.strategies = strategies if strategies is not None else default_strategies()

    async def discover_peers(self) -> DiscoveryResult:
        runnable = [
            s for s in self.strategies if s.applicable(self.cluster, self.credentials)
        ]
        if not runnable:
            if self.cluster.in_cluster and isinstance(self.credentials, CredentialLoadError):
                return Unavailable(results.CREDENTIALS_INVALID, error=str(self.credentials))
            return Unavailable(results.NOT_IN_CLUSTER_ENVIRONMENT)

        outcome: DiscoveryResult = Unavailable(results.NO_ENDPOINTS)
        for strategy in runnable:
            try:
                outcome = await strategy.discover(self.cluster, self.credentials)
            except Exception as e:
                logger.error(
                    "peerrelay.discovery_strategy_crashed",
                    strategy=strategy.name,
                    error=str(e),
                )
                outcome = Unavailable(results.API_ERROR, error=str(e))

            if isinstance(outcome, Found):
                logger.info(
                    "peerrelay.peers_found",
                    strategy=strategy.name,
                    peers=len(outcome.endpoints),
                )
                return outcome

            logger.info(
                "peerrelay.discovery_strategy_failed",
                strategy=strategy.name,
                reason=outcome.reason,
                status_code=outcome.status_code,
            )
        return outcome


def load_credentials(settings: Settings) -> Credentials:
    """Credentials for strategies 1/2; a load error is kept, not raised."""
    try:
        return credential_files.load(
            settings.token_path, settings.ca_cert_path, settings.client_key_path
        )
    except CredentialLoadError as e:
        logger.warning("peerrelay.credentials_invalid", path=e.path, error=str(e))
        return e


def build_discovery_chain(
    settings: Settings,
    environ=None,
    strategies: Optional[list[DiscoveryStrategy]] = None,
) -> DiscoveryChain:
    """Capture the environment + credentials once and wire up the chain."""
    cluster = ClusterEnvironment.from_environ(settings, environ)
    creds = load_credentials(settings)
    logger.info(
        "peerrelay.discovery_configured",
        in_cluster=cluster.in_cluster,
        namespace=cluster.namespace,
        workload=cluster.workload_name,
        credentials=type(creds).__name__,
    )
    return DiscoveryChain(cluster, creds, strategies)
