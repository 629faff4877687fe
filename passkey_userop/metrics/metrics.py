import logging

from prometheus_client import Counter, Summary, start_http_server

USER_OPERATIONS_BUILT = Counter(
    "passkey_userop_operations_built_total",
    "UserOperations built, by deployment status of the sender",
    ["deployed"],
)
SUBMISSIONS = Counter(
    "passkey_userop_submissions_total",
    "UserOperation submissions, by path and outcome",
    ["path", "status"],
)
BUNDLER_REJECTIONS = Counter(
    "passkey_userop_bundler_rejections_total",
    "UserOperations rejected by the bundler",
)
SIMULATION_REVERTS = Counter(
    "passkey_userop_simulation_reverts_total",
    "Direct submissions stopped by a reverting handleOps simulation",
)
FEE_ORACLE_FALLBACKS = Counter(
    "passkey_userop_fee_oracle_fallbacks_total",
    "Times the default fees were used instead of network fee data",
)
BUILD_TIME = Summary(
    "passkey_userop_build_seconds",
    "Time spent building an unsigned UserOperation",
)
CONFIRMATION_TIME = Summary(
    "passkey_userop_confirmation_seconds",
    "Time from submission until the inclusion receipt was observed",
)


def run_metrics_server(host="localhost", port=8000):
    """
    run prometheus metrics server
    """
    logging.info(f"Starting Metrics Http Server at: {host}:{port}")
    start_http_server(port, addr=host)
