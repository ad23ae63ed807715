"""Tests for the MQTT foreground activation signal (sanna/assistant/foreground.py)."""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock, Mock, patch

import paho.mqtt.client as mqtt
import pytest
from sanna.assistant.config import MqttConfig
from sanna.assistant.context import AgentContext
from sanna.assistant.foreground import MqttForegroundSignal, NullForegroundActivator


@pytest.fixture
def no_host_config(mqtt_config):
    return MqttConfig(
        host=None,
        port=1883,
        topic_base=mqtt_config.topic_base,
        username=None,
        password=None,
        tls_enabled=False,
        ca_cert=None,
        cert=None,
        key=None,
    )


# Connection Tests


def test_topic(mqtt_config, mock_logger):
    signal_ = MqttForegroundSignal(mqtt_config, mock_logger)
    assert signal_.topic == "sanna/test-device/ui/foreground"


@patch("paho.mqtt.client.Client")
def test_connect(mock_client_class, mqtt_config, mock_logger):
    """Test that connect creates, connects and starts the paho client once."""
    mock_client_instance = MagicMock()
    mock_client_class.return_value = mock_client_instance

    signal_ = MqttForegroundSignal(mqtt_config, mock_logger)
    signal_.connect()
    signal_.connect()

    mock_client_class.assert_called_once()
    assert mock_client_class.call_args[1]["callback_api_version"] == mqtt.CallbackAPIVersion.VERSION2
    mock_client_instance.connect.assert_called_once_with("localhost", 1883, keepalive=30)
    mock_client_instance.loop_start.assert_called_once()


@patch("paho.mqtt.client.Client")
def test_connect_without_host_is_noop(mock_client_class, no_host_config, mock_logger):
    signal_ = MqttForegroundSignal(no_host_config, mock_logger)
    signal_.connect()

    mock_client_class.assert_not_called()
    assert signal_.is_connected() is False


@patch("paho.mqtt.client.Client")
def test_connect_failure_is_logged(mock_client_class, mqtt_config, mock_logger):
    mock_client_instance = MagicMock()
    mock_client_instance.connect.side_effect = OSError("Connection refused")
    mock_client_class.return_value = mock_client_instance

    signal_ = MqttForegroundSignal(mqtt_config, mock_logger)
    signal_.connect()

    mock_logger.warning.assert_called_once()
    assert signal_._client is None


@patch("paho.mqtt.client.Client")
def test_disconnect(mock_client_class, mqtt_config, mock_logger):
    mock_client_instance = MagicMock()
    mock_client_class.return_value = mock_client_instance

    signal_ = MqttForegroundSignal(mqtt_config, mock_logger)
    signal_.connect()
    signal_.disconnect()

    mock_client_instance.loop_stop.assert_called_once()
    mock_client_instance.disconnect.assert_called_once()
    assert signal_._client is None


# Activation Tests


@pytest.mark.anyio
async def test_bring_to_foreground_publishes(mqtt_config, mock_logger, mock_mqtt_client):
    signal_ = MqttForegroundSignal(mqtt_config, mock_logger)
    signal_._client = mock_mqtt_client

    await signal_.bring_to_foreground("timer:timer_1")

    mock_mqtt_client.publish.assert_called_once()
    args, kwargs = mock_mqtt_client.publish.call_args
    assert args == ("sanna/test-device/ui/foreground",)
    assert json.loads(kwargs["payload"])["reason"] == "timer:timer_1"
    assert kwargs["qos"] == 1
    assert kwargs["retain"] is False


@pytest.mark.anyio
async def test_bring_to_foreground_publish_failure_is_swallowed(mqtt_config, mock_logger, mock_mqtt_client):
    mock_mqtt_client.publish.side_effect = RuntimeError("broker gone")
    signal_ = MqttForegroundSignal(mqtt_config, mock_logger)
    signal_._client = mock_mqtt_client

    await signal_.bring_to_foreground("schedule:sched_1")

    mock_logger.warning.assert_called_once()


@pytest.mark.anyio
async def test_bring_to_foreground_without_broker(no_host_config, mock_logger):
    signal_ = MqttForegroundSignal(no_host_config, mock_logger)
    await signal_.bring_to_foreground("accessibility")
    assert signal_._client is None


@pytest.mark.anyio
async def test_null_activator(mock_logger):
    await NullForegroundActivator(mock_logger).bring_to_foreground("timer:x")
    mock_logger.debug.assert_called_once()


@pytest.mark.anyio
async def test_context_swallows_activation_errors(make_context):
    failing = Mock()

    async def _explode(reason):
        raise RuntimeError("no display")

    failing.bring_to_foreground = _explode
    context: AgentContext = make_context(None, foreground=failing)

    await context.deliver("Done", "timer:x")

    [entry] = await context.conversation.peek_pending()
    assert entry.text == "Done"


# Subscription Tests


def test_on_foreground_requires_connection(mqtt_config):
    signal_ = MqttForegroundSignal(mqtt_config, logging.getLogger("test"))
    with pytest.raises(RuntimeError):
        signal_.on_foreground(lambda reason: None)


def test_on_foreground_dispatches_reason(mqtt_config, mock_logger, mock_mqtt_client):
    received = []
    signal_ = MqttForegroundSignal(mqtt_config, mock_logger)
    signal_._client = mock_mqtt_client

    signal_.on_foreground(received.append)

    mock_mqtt_client.subscribe.assert_called_once_with("sanna/test-device/ui/foreground", qos=1)
    topic, callback = mock_mqtt_client.message_callback_add.call_args[0]
    assert topic == "sanna/test-device/ui/foreground"
    message = Mock(payload=b'{"reason": "schedule:sched_1"}')
    callback(None, None, message)
    message.payload = b"not json"
    callback(None, None, message)

    assert received == ["schedule:sched_1"]
    mock_logger.error.assert_called_once()
