"""Prometheus metric definitions for mailrules.

Single source of truth for all custom metrics. Import from here in API,
runner and Celery code.
"""

from prometheus_client import Counter, Histogram

# --- Rule application jobs ---

rule_application_jobs_started_total = Counter(
    "mailrules_rule_application_jobs_started_total",
    "Rule application jobs started, by mode (single/all) and origin (request/resume)",
    ["mode", "origin"],
)

rule_application_jobs_finished_total = Counter(
    "mailrules_rule_application_jobs_finished_total",
    "Rule application jobs finished, by mode and final status",
    ["mode", "status"],
)

rule_application_items_processed_total = Counter(
    "mailrules_rule_application_items_processed_total",
    "Threads examined by rule application jobs",
    ["mode"],
)

rule_application_items_failed_total = Counter(
    "mailrules_rule_application_items_failed_total",
    "Threads skipped because their context or action failed",
    ["mode"],
)

rule_matches_total = Counter(
    "mailrules_rule_matches_total",
    "Threads a rule matched and acted on during rule application",
    ["mode"],
)

rule_application_page_duration_seconds = Histogram(
    "mailrules_rule_application_page_duration_seconds",
    "Time spent processing one page of a rule application job",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# --- Preview ---

rule_preview_scanned_messages = Histogram(
    "mailrules_rule_preview_scanned_messages",
    "Messages scanned per rule preview request",
    buckets=(10, 50, 100, 250, 500, 1000, 2500),
)

# --- Retention ---

rule_applications_pruned_total = Counter(
    "mailrules_rule_applications_pruned_total",
    "Finished rule application records deleted by the retention task",
)
