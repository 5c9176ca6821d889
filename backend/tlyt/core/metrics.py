"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY

# Ledger metrics
try:
    chips_debited_counter = Counter(
        'tlyt_chips_debited_total',
        'Total number of chips debited from accounts',
        ['category']
    )
except ValueError:
    chips_debited_counter = REGISTRY._names_to_collectors.get('tlyt_chips_debited_total')

try:
    chips_credited_counter = Counter(
        'tlyt_chips_credited_total',
        'Total number of chips credited to accounts',
        ['category']
    )
except ValueError:
    chips_credited_counter = REGISTRY._names_to_collectors.get('tlyt_chips_credited_total')

try:
    insufficient_balance_counter = Counter(
        'tlyt_insufficient_balance_total',
        'Total number of debits rejected for insufficient balance'
    )
except ValueError:
    insufficient_balance_counter = REGISTRY._names_to_collectors.get('tlyt_insufficient_balance_total')

# Analysis metrics
try:
    analysis_runs_counter = Counter(
        'tlyt_analysis_runs_total',
        'Total number of analysis runs by outcome',
        ['status', 'mode']
    )
except ValueError:
    analysis_runs_counter = REGISTRY._names_to_collectors.get('tlyt_analysis_runs_total')

try:
    refunds_counter = Counter(
        'tlyt_refunds_total',
        'Total number of refunds issued',
        ['source']
    )
except ValueError:
    refunds_counter = REGISTRY._names_to_collectors.get('tlyt_refunds_total')

# Billing metrics
try:
    webhook_events_counter = Counter(
        'tlyt_webhook_events_total',
        'Total number of billing webhook notifications by outcome',
        ['status']
    )
except ValueError:
    webhook_events_counter = REGISTRY._names_to_collectors.get('tlyt_webhook_events_total')

# Reconciliation metrics
try:
    reconcile_runs_counter = Counter(
        'tlyt_reconcile_runs_total',
        'Total number of reconciliation sweeps',
        ['status']
    )
except ValueError:
    reconcile_runs_counter = REGISTRY._names_to_collectors.get('tlyt_reconcile_runs_total')
