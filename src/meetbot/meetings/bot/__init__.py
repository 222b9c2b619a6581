"""Meeting bot lifecycle -- vendor client, deployment scheduling and
status reconciliation.

Provides MeetingBaasClient for the vendor REST API, BotDeploymentScheduler
for timed bot deployment through durable timers, and
StatusReconciliationPoller for the pull-based status safety net.
"""
