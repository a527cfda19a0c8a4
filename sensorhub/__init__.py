"""Device-resident telemetry agent publishing sensor readings over MQTT."""
