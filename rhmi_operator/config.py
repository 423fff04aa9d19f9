"""Configuration settings for the RHMI installation operator."""

import os

# Installation CRD settings
CRD_GROUP = "integreatly.org"
CRD_VERSION = "v1alpha1"
CRD_PLURAL = "rhmis"
CRD_KIND = "RHMI"

# Add-on instance that receives the health conditions
ADDON_GROUP = "addons.managed.openshift.io"
ADDON_VERSION = "v1alpha1"
ADDON_PLURAL = "addoninstances"
ADDON_INSTANCE_NAME = "addon-instance"

# Namespace holding the installation ("" = all namespaces)
WATCH_NAMESPACE = os.getenv("WATCH_NAMESPACE", "")
INSTALLATION_NAME = os.getenv("INSTALLATION_NAME", "rhoam")

# Version written to status.toVersion on first install
OPERATOR_VERSION = "1.40.0"

# Installation types
INSTALLATION_TYPE_MANAGED = "managed"
INSTALLATION_TYPE_MANAGED_API = "managed-api"
INSTALLATION_TYPE_MULTITENANT_MANAGED_API = "multitenant-managed-api"
QUOTA_INSTALLATION_TYPES = (
    INSTALLATION_TYPE_MANAGED_API,
    INSTALLATION_TYPE_MULTITENANT_MANAGED_API,
)

# Quota settings
QUOTA_CONFIG_MAP_NAME = "quota-config-managed-api-service"
QUOTA_CONFIG_MAP_KEY = "quota-configs"
QUOTA_PARAMS_SECRET = "addon-managed-api-service-parameters"
QUOTA_PARAM_NAME = "addon-managed-api-service"
TRIAL_QUOTA_PARAM_NAME = "trial-quota"
QUOTA_ENV_VAR = "QUOTA"

# Alert rules driven by the rate limit of the active quota
ALERT_RULE_NAMES = (
    "api-usage-alert-level1",
    "api-usage-alert-level2",
    "api-usage-alert-level3",
)
ALERT_RULE_PERIODS = ("4h", "2h", "30m")
ALERT_RULE_METRIC = "ratelimit_service_rate_limit_apicast_ratelimit_generic_key_slowpath_total_hits"
ALERT_RULE_NAMESPACE_SUFFIX = "observability"

# Cloud resource strategy override settings
CRO_STRATEGY_CONFIG_MAP = "cloud-resources-aws-strategies"
CRO_STRATEGY_TIER = "production"
POSTGRES_STRATEGY_KEY = "postgres"
REDIS_STRATEGY_KEY = "redis"
DEFAULT_BACKUP_APPLY_ON = "03:01"
DEFAULT_MAINTENANCE_APPLY_FROM = "Thu 02:00"

# Watch settings
WATCH_TIMEOUT_SECONDS = 300
RECONCILE_INTERVAL_SECONDS = int(os.getenv("RECONCILE_INTERVAL_SECONDS", "30"))

# Minimum interval between add-on heartbeats when the conditions are unchanged
HEARTBEAT_INTERVAL_SECONDS = 60

# Optimistic concurrency retries for read-modify-write updates
CONFLICT_RETRY_ATTEMPTS = 5

# Resource comparison tolerance (for floating point comparison)
RESOURCE_TOLERANCE = 0.001
