import json
import logging
import socket
from typing import Optional

from confluent_kafka import Producer
from confluent_kafka.error import KafkaError

from config.settings import get_settings
from services.assessment_engine.models import CompletionResult

logger = logging.getLogger(__name__)

# Global Kafka Producer instance
_producer_instance: Optional[Producer] = None


def _get_kafka_config() -> dict:
    """Builds the Kafka configuration dictionary."""
    config = {
        'bootstrap.servers': get_settings().kafka_bootstrap,
        'client.id': socket.gethostname(),
        'retries': 5,
        'message.timeout.ms': 10000,  # 10 seconds per message attempt
    }
    logger.info(f"Kafka Producer config: {config}")
    return config


def _delivery_report(err: Optional[KafkaError], msg):
    """Callback function for Kafka message delivery reports."""
    if err is not None:
        logger.error(f"Message delivery failed: {err}")
    else:
        logger.debug(f"Message delivered to {msg.topic()} [{msg.partition()}] @ offset {msg.offset()}")


def get_producer() -> Optional[Producer]:
    """Initializes and returns the Kafka Producer instance."""
    global _producer_instance
    if _producer_instance is None:
        try:
            _producer_instance = Producer(_get_kafka_config())
            logger.info("Confluent Kafka Producer initialized.")
        except KafkaError as e:
            logger.error(f"Failed to initialize Confluent Kafka Producer (KafkaError): {e}")
            _producer_instance = None
        except Exception as e:
            logger.error(f"Failed to initialize Confluent Kafka Producer (Other Error): {e}")
            _producer_instance = None
    return _producer_instance


def send_event(topic: str, payload: dict, key: Optional[str] = None) -> bool:
    """
    Sends a JSON event to `topic`. Returns False when the event could not be queued;
    callers treat publishing as best effort.
    """
    producer = get_producer()
    if producer is None:
        logger.error("Kafka producer is not initialized. Cannot send event.")
        return False

    try:
        producer.produce(
            topic,
            value=json.dumps(payload).encode('utf-8'),
            key=key.encode('utf-8') if key else None,
            callback=_delivery_report,
        )
        # Serve already-queued delivery callbacks without blocking
        producer.poll(0)
        return True
    except BufferError:
        logger.error(f"Kafka producer queue is full for topic '{topic}'. Flushing.")
        producer.flush(5)
        return False
    except Exception as e:
        logger.error(f"Error producing event to Kafka topic '{topic}': {e}")
        return False


def assessment_completed_payload(result: CompletionResult) -> dict:
    """Event body consumed by the report compiler."""
    return {
        "session_id": result.session_id,
        "tier": result.tier,
        "scores": {trait: score.model_dump(mode="json") for trait, score in result.scores.items()},
        "activated_pathways": [p.value for p in result.activated_pathways],
        "responses": [r.model_dump(mode="json") for r in result.responses],
        "match_confidence": result.match_confidence,
        "quality": result.quality.model_dump(mode="json"),
        "summary": result.summary.model_dump(mode="json"),
    }


def publish_assessment_completed(result: CompletionResult) -> bool:
    topic = get_settings().assessment_completed_topic
    return send_event(topic, assessment_completed_payload(result), key=result.session_id)


def flush_producer(timeout: float = 10.0):
    """Flushes the producer queue, ensuring all messages are sent."""
    if _producer_instance is None:
        return
    remaining = _producer_instance.flush(timeout)
    if remaining > 0:
        logger.warning(f"Producer flush timed out, {remaining} messages still in queue.")
    else:
        logger.info("Producer flushed successfully.")
