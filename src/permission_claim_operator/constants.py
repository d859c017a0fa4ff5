"""Constants for the Permission Claim Operator."""

# API Group
API_GROUP = "permissions.thetechnick.ninja"
API_VERSION = "v1alpha1"
PLURAL_PERMISSION_CLAIM = "permissionclaims"

# Resource Kinds
KIND_PERMISSION_CLAIM = "PermissionClaim"
KIND_SERVICE_ACCOUNT = "ServiceAccount"
KIND_SECRET = "Secret"
KIND_ROLE = "Role"
KIND_CLUSTER_ROLE = "ClusterRole"
KIND_ROLE_BINDING = "RoleBinding"
KIND_CLUSTER_ROLE_BINDING = "ClusterRoleBinding"

RBAC_API_GROUP = "rbac.authorization.k8s.io"

# Labels
LABEL_MANAGED_BY = f"{API_GROUP}/managed-by"

# Annotations
ANNOTATION_OWNER = f"{API_GROUP}/owner"
ANNOTATION_RECONCILE_TRIGGER = f"{API_GROUP}/reconcile-trigger"
ANNOTATION_SERVICE_ACCOUNT_NAME = "kubernetes.io/service-account.name"

# Finalizers
FINALIZER = f"{API_GROUP}/cleanup"

# Controller
CONTROLLER_NAME = "permission-claim-operator"

# Secrets
SECRET_TYPE_SERVICE_ACCOUNT_TOKEN = "kubernetes.io/service-account-token"
SERVICE_ACCOUNT_TOKEN_KEY = "token"
KUBECONFIG_KEY = "kubeconfig"

# Condition Types
COND_BOUND = "Bound"

# Condition Reasons
REASON_PERMISSIONS_ESTABLISHED = "PermissionsEstablished"
REASON_WAITING_FOR_TOKEN = "WaitingForToken"

# Phases
PHASE_PENDING = "Pending"
PHASE_BOUND = "Bound"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_RESOURCE_CREATED = "ResourceCreated"
EVENT_REASON_RESOURCE_UPDATED = "ResourceUpdated"
EVENT_REASON_KUBECONFIG_CREATED = "KubeconfigCreated"
EVENT_REASON_CLEANUP_COMPLETED = "CleanupCompleted"
