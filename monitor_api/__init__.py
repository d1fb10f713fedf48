"""IoT Broker Monitor: API de gestión de brokers MQTT y tópicos."""
