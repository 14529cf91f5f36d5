"""Prometheus metrics for the application"""
from prometheus_client import Counter, Gauge, REGISTRY

# Payment event metrics
try:
    payment_events_counter = Counter(
        'marketplace_payment_events_total',
        'Total number of payment events received, by outcome',
        ['event_type', 'outcome']
    )
except ValueError:
    payment_events_counter = REGISTRY._names_to_collectors.get('marketplace_payment_events_total')

try:
    orders_materialized_counter = Counter(
        'marketplace_orders_materialized_total',
        'Total number of orders materialized from payment events'
    )
except ValueError:
    orders_materialized_counter = REGISTRY._names_to_collectors.get('marketplace_orders_materialized_total')

try:
    failed_events_counter = Counter(
        'marketplace_failed_events_total',
        'Total number of payment events routed to the recovery log',
        ['error_kind']
    )
except ValueError:
    failed_events_counter = REGISTRY._names_to_collectors.get('marketplace_failed_events_total')

# Fan-out metrics
try:
    seller_notifications_counter = Counter(
        'marketplace_seller_notifications_total',
        'Total number of seller notification attempts',
        ['status']
    )
except ValueError:
    seller_notifications_counter = REGISTRY._names_to_collectors.get('marketplace_seller_notifications_total')

try:
    order_emails_counter = Counter(
        'marketplace_order_emails_total',
        'Total number of buyer confirmation email attempts',
        ['status']
    )
except ValueError:
    order_emails_counter = REGISTRY._names_to_collectors.get('marketplace_order_emails_total')

# Lifecycle metrics
try:
    invalid_transitions_counter = Counter(
        'marketplace_invalid_transitions_total',
        'Total number of rejected order state transitions'
    )
except ValueError:
    invalid_transitions_counter = REGISTRY._names_to_collectors.get('marketplace_invalid_transitions_total')

# Backlog gauges (refreshed on scrape)
try:
    pending_failed_events_gauge = Gauge(
        'marketplace_failed_events_pending',
        'Number of failed payment events awaiting manual resolution'
    )
except ValueError:
    pending_failed_events_gauge = REGISTRY._names_to_collectors.get('marketplace_failed_events_pending')

try:
    unnotified_orders_gauge = Gauge(
        'marketplace_orders_awaiting_notification',
        'Number of orders whose sellers have not been notified yet'
    )
except ValueError:
    unnotified_orders_gauge = REGISTRY._names_to_collectors.get('marketplace_orders_awaiting_notification')


def update_pipeline_backlog_gauges(db):
    """Refresh backlog gauges from the database"""
    from marketplace.models.failed_event import FailedEvent
    from marketplace.models.order import Order

    pending_failed_events_gauge.set(db.query(FailedEvent).filter(FailedEvent.status == "pending").count())
    unnotified_orders_gauge.set(db.query(Order).filter(Order.notified_at.is_(None)).count())
