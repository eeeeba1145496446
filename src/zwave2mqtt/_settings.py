"""Gateway configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  All variables carry the ``ZWAVE2MQTT_`` prefix and nested
models use ``__`` as the delimiter, e.g.
``ZWAVE2MQTT_MQTT__HOST=broker.local``.

The schema covers five concerns:

* **MQTT** — broker connection, client name and topic layout.
* **Z-Wave** — serial port and driver options handed to the mesh driver.
* **Gateway** — how values are rendered onto the topic tree.
* **Store** — where the scene document lives.
* **Logging** — level, format, optional file sink, rotation.

All durations are in **seconds** except ``zwave.poll_interval``, which
is forwarded to the driver untouched and is in **milliseconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# -------------------------------------------------------------------
# Sub-models (plain BaseModel, nested into Settings by composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        ZWAVE2MQTT_MQTT__NAME=home
        ZWAVE2MQTT_MQTT__HOST=broker.local
        ZWAVE2MQTT_MQTT__PORT=1883
        ZWAVE2MQTT_MQTT__USERNAME=user
        ZWAVE2MQTT_MQTT__PASSWORD=secret
        ZWAVE2MQTT_MQTT__PREFIX=zwave
    """

    name: str = Field(
        default="zwave2mqtt",
        description=(
            "Gateway name. The MQTT client id and the status topic "
            "segment are derived from it as 'ZWAVE_GATEWAY-{name}'."
        ),
    )
    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    prefix: str = Field(
        default="zwave",
        description="Root prefix for every topic published or subscribed.",
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=1,
        description="QoS used for value publications and subscriptions.",
    )
    retain: bool = Field(
        default=False,
        description="Retain flag used for value publications.",
    )
    clean: bool = Field(
        default=True,
        description="Start a clean MQTT session on every connect.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description=(
            "Initial seconds to wait before reconnecting after "
            "connection loss.  Doubles on each consecutive failure "
            "up to ``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Upper bound (seconds) for the reconnect backoff.",
    )


class ZwaveSettings(BaseModel):
    """Options forwarded to the mesh driver adapter."""

    port: str = Field(
        default="/dev/ttyACM0",
        description="Serial port of the Z-Wave controller.",
    )
    network_key: SecretStr | None = Field(
        default=None,
        description="Network key for secure inclusion (optional).",
    )
    logging: bool = Field(
        default=False,
        description="Enable the driver's own console logging.",
    )
    save_config: bool = Field(
        default=False,
        description="Let the driver persist its network configuration.",
    )
    poll_interval: Annotated[int, Field(ge=0)] = Field(
        default=60000,
        description="Driver poll interval in milliseconds, applied after scan.",
    )
    driver_max_attempts: Annotated[int, Field(ge=1)] = Field(
        default=3,
        description="Connection attempts before the driver is given up on.",
    )
    driver: str = Field(
        default="zwave2mqtt._mesh:NullMeshDriver",
        description=(
            "Mesh driver adapter as a 'module.path:ClassName' import "
            "string.  The class is called with the ZwaveSettings instance."
        ),
    )


class GatewaySettings(BaseModel):
    """How node values are mapped onto the topic tree."""

    payload_type: Literal["raw", "time_value"] = Field(
        default="raw",
        description=(
            "'raw' publishes the bare JSON value; 'time_value' "
            "publishes {\"value\": ..., \"time\": epoch-ms}."
        ),
    )
    use_node_names: bool = Field(
        default=False,
        description=(
            "Use '{location}/{name}' instead of the numeric node id "
            "as the node segment of value topics."
        ),
    )


class StoreSettings(BaseModel):
    """Location of the persisted JSON documents."""

    directory: str = Field(
        default="store",
        description="Directory holding the JSON documents.",
    )
    scenes_file: str = Field(
        default="scenes.json",
        description="File name of the scene collection document.",
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    The ``format`` field selects the output format:

    - ``"json"`` (default) — structured JSON lines for container
      log aggregators.
    - ``"text"`` — human-readable timestamped format for local
      development and direct terminal use.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format ('json' or 'text').",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for the zwave2mqtt gateway.

    Loaded from ``ZWAVE2MQTT_``-prefixed environment variables with the
    nested delimiter ``__`` and an optional ``.env`` file in the
    working directory.

    Example ``.env``::

        ZWAVE2MQTT_MQTT__HOST=broker.local
        ZWAVE2MQTT_MQTT__NAME=home
        ZWAVE2MQTT_ZWAVE__PORT=/dev/ttyUSB0
        ZWAVE2MQTT_LOGGING__LEVEL=DEBUG
        ZWAVE2MQTT_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="ZWAVE2MQTT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    zwave: ZwaveSettings = Field(
        default_factory=ZwaveSettings,
        description="Mesh driver settings.",
    )
    gateway: GatewaySettings = Field(
        default_factory=GatewaySettings,
        description="Topic and payload rendering options.",
    )
    store: StoreSettings = Field(
        default_factory=StoreSettings,
        description="Document store location.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
