"""Constants for the Lumigo Operator."""

# API Group
API_GROUP = "operator.lumigo.io"
API_VERSION = "v1alpha1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Resource Kinds
KIND_LUMIGO = "Lumigo"
PLURAL_LUMIGO = "lumigoes"

# Finalizers
FINALIZER = f"{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "lumigo-operator"
CONTROLLER_NAME = "lumigo-operator"

# Annotations
ANNOTATION_RECONCILE_REQUESTED = f"{API_GROUP}/reconcile-requested-at"

# Provenance marker stamped on instrumented pod templates
LABEL_INSTRUMENTED = "lumigo.io/instrumented"
ANNOTATION_INSTRUMENTATION = "lumigo.io/instrumentation"
# Fields of the pod template that were present but empty before injection
ANNOTATION_EMPTY_FIELDS = "lumigo.io/instrumentation-empty-fields"

# Opt-out label, on the workload or on its pod template
LABEL_AUTO_TRACE = "lumigo.auto-trace"

# Reserved names of injected elements
RESERVED_PREFIX = "lumigo-"
INJECTOR_CONTAINER_NAME = "lumigo-injector"
SIDECAR_CONTAINER_NAME = "lumigo-telemetry-sidecar"
INJECTOR_VOLUME_NAME = "lumigo-injector"
INJECTOR_MOUNT_PATH = "/opt/lumigo"
INJECTOR_LD_PRELOAD = f"{INJECTOR_MOUNT_PATH}/injection/lumigo_injector.so"

ENV_LD_PRELOAD = "LD_PRELOAD"
ENV_LUMIGO_TRACER_TOKEN = "LUMIGO_TRACER_TOKEN"
ENV_LUMIGO_ENDPOINT = "LUMIGO_ENDPOINT"
ENV_LUMIGO_LOGS_ENDPOINT = "LUMIGO_LOGS_ENDPOINT"
INJECTED_ENV_VARS = (
    ENV_LD_PRELOAD,
    ENV_LUMIGO_ENDPOINT,
    ENV_LUMIGO_LOGS_ENDPOINT,
    ENV_LUMIGO_TRACER_TOKEN,
)

# Token validation
TOKEN_PATTERN = r"t_[a-zA-Z0-9]{21}"
TOKEN_CREDENTIAL_KIND = "Lumigo token"
TOKEN_DOCS_URL = "https://docs.lumigo.io/docs/lumigo-tokens"

# Condition Types
COND_ACTIVE = "Active"
COND_ERROR = "Error"

# Condition reasons
REASON_ACTIVE = "Active"
REASON_INACTIVE = "Inactive"
REASON_NAMESPACE_CONFLICT = "NamespaceConflict"
REASON_INVALID_CREDENTIALS = "InvalidCredentials"

# Status messages
MSG_NAMESPACE_CONFLICT = "other Lumigo instances in this namespace"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_ACTIVATED = "Activated"
EVENT_REASON_NAMESPACE_CONFLICT = "NamespaceConflict"
EVENT_REASON_INVALID_CREDENTIALS = "InvalidCredentials"
EVENT_REASON_WORKLOAD_INSTRUMENTED = "WorkloadInstrumented"
EVENT_REASON_WORKLOAD_UNINSTRUMENTED = "WorkloadUninstrumented"
EVENT_REASON_INJECTION_FAILED = "InjectionFailed"
