from leadflow.core.config import settings
from leadflow.platform.ports.event_bus import EventBusPort
from leadflow.platform.adapters.bus_noop import NoopEventBus
from leadflow.platform.adapters.bus_redis import RedisEventBus
from leadflow.platform.ports.messaging import MessagingGatewayPort
from leadflow.platform.adapters.messaging_noop import NoopMessagingGateway
from leadflow.platform.adapters.messaging_evolution import EvolutionMessagingGateway

class ProviderRegistry:
    _event_bus: EventBusPort | None = None
    _messaging: MessagingGatewayPort | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def messaging(cls) -> MessagingGatewayPort:
        if cls._messaging is None:
            prov = (settings.MESSAGING_PROVIDER or "noop").lower()
            if prov == "evolution":
                cls._messaging = EvolutionMessagingGateway()
            else:
                cls._messaging = NoopMessagingGateway()
        return cls._messaging

    @classmethod
    def override_event_bus(cls, bus: EventBusPort | None) -> None:
        cls._event_bus = bus

    @classmethod
    def override_messaging(cls, gateway: MessagingGatewayPort | None) -> None:
        cls._messaging = gateway

registry = ProviderRegistry()
