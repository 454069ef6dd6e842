# spendwise/services/service_base.py
"""
Base service class for standardized service implementation.

All services should inherit from BaseService to ensure consistent:
- Initialization patterns
- Error handling
- Health checks
- Resource cleanup
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, TypeVar, Generic
import logging
from spendwise.core.exceptions import ConfigurationError, UpstreamUnavailableError

# Type variable for service configuration
ConfigType = TypeVar('ConfigType')


class ServiceConfig:
    """Base configuration class for services"""
    pass


class BaseService(ABC, Generic[ConfigType]):
    """
    Abstract base class for all services.

    Provides:
    - Lazy initialization pattern
    - Consistent error handling
    - Health check interface
    - Resource management
    """

    def __init__(
        self,
        config: Optional[ConfigType] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.config = config
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._initialized = False
        self._client = None

        self.service_name = self.__class__.__name__

    @abstractmethod
    async def _initialize_client(self) -> Any:
        """
        Initialize the underlying client/connection.

        Raises:
            ConfigurationError: If configuration is invalid
            UpstreamUnavailableError: If initialization fails
        """
        pass

    async def initialize(self) -> None:
        """
        Initialize the service (lazy loading pattern).

        This method is idempotent - multiple calls are safe.
        """
        if self._initialized:
            self.logger.debug(f"{self.service_name} already initialized")
            return

        try:
            self.logger.info(f"Initializing {self.service_name}...")
            self._validate_config()
            self._client = await self._initialize_client()
            self._initialized = True
            self.logger.info(f"{self.service_name} initialized successfully")

        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to initialize {self.service_name}"
            self.logger.error(error_msg, exc_info=True)
            raise UpstreamUnavailableError(
                error_msg,
                operation="initialize",
                details={'original_error': str(e), 'error_type': type(e).__name__}
            )

    def _validate_config(self) -> None:
        """
        Validate service configuration.

        Override this method to add service-specific validation.
        """
        if self.config is None:
            self.logger.debug(f"No configuration provided for {self.service_name}")

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check on the service.

        Returns:
            Dict containing ``healthy`` (bool), ``status`` (str) and
            optional ``details``.
        """
        pass

    async def ensure_initialized(self) -> None:
        """Call at the start of any public method that needs the client"""
        if not self._initialized:
            await self.initialize()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def client(self) -> Any:
        if not self._initialized or self._client is None:
            raise UpstreamUnavailableError(
                f"{self.service_name} is not initialized. Call initialize() first.",
                operation="client"
            )
        return self._client

    async def shutdown(self) -> None:
        """Gracefully shutdown the service and cleanup resources."""
        if not self._initialized:
            return

        try:
            self.logger.info(f"Shutting down {self.service_name}...")
            await self._cleanup()
            self._client = None
            self._initialized = False
            self.logger.info(f"{self.service_name} shut down successfully")

        except Exception:
            # Logged, not raised
            self.logger.error(f"Error during {self.service_name} shutdown", exc_info=True)

    async def _cleanup(self) -> None:
        """Service-specific cleanup logic."""
        pass

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "service_name": self.service_name,
            "initialized": self._initialized,
        }
