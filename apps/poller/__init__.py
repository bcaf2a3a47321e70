"""
Poller App - Scheduled polling of external feedback sources

Responsibilities:
- Reconcile running polling jobs against enabled configs (SQLite)
- Run one interval job per (tenant, source type, instance url)
- Enforce per-tenant sliding-window rate limits (Redis)
- Persist per-job polling state and trip the circuit breaker (Redis)
- Fetch records via the generic paginated client or a source-specific behavior
- Publish every fetched record to Redis Pub/Sub

Output:
- Redis event: channel=feedback.ingestion, payload={tenant_id, source_type,
  source_config, ingestion_method, raw_data, retry_count, correlation_id, ts}
"""
