"""
Constants used throughout the admission webhook server.

This module defines the constant values shared by the certificate
provisioner, the dispatcher and the server including:
- Certificate file names and validity policy
- Supported admission review versions
- Webhook path prefixes
- Default ports and timeouts
"""

from datetime import timedelta

# Certificate file names, one pair per role
AUTHORITY_BASENAME = "ca"
LEAF_BASENAME = "srv"
CERTIFICATE_SUFFIX = ".cert"
PRIVATE_KEY_SUFFIX = ".key"

# Certificates are issued once at bootstrap and never renewed while running
CERTIFICATE_VALIDITY = timedelta(days=5 * 365)
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
PRIVATE_KEY_FILE_MODE = 0o600

# Sub-folder of the script folder that receives generated certificates
SECRETS_FOLDER_NAME = ".secrets"

# Admission review protocol
ADMISSION_API_GROUP = "admission.k8s.io"
ADMISSION_REVIEW_KIND = "AdmissionReview"
SUPPORTED_ADMISSION_VERSIONS = ("v1", "v1beta1")
JSON_PATCH_TYPE = "JSONPatch"

# Webhook URL path prefixes per webhook type
MUTATE_PATH_PREFIX = "/mutate"
VALIDATE_PATH_PREFIX = "/validate"

# Registration defaults reported to the manifest generator
DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 5
DEFAULT_SIDE_EFFECTS = "None"

# Request handling
DEFAULT_HANDLER_TIMEOUT_SECONDS = 10.0
INVALID_CONTENT_MESSAGE = "Invalid content"
NOT_FOUND_MESSAGE = "Not found"
HANDLER_ERROR_PREFIX = "Error in handling admission request"

# Request storage key holding the action resolved in prefix dispatch mode
WEBHOOK_ACTION_KEY = "admission_server.webhook_action"

# Listener ports
DEFAULT_HTTPS_PORT = 443
DEFAULT_HTTP_PORT = 80
UNPRIVILEGED_HTTPS_PORT = 8443
UNPRIVILEGED_HTTP_PORT = 8080

# Deployment defaults
DEFAULT_NAMESPACE = "devops-webhooks"
DEFAULT_APPLICATION_NAME = "admission-webhook"
DEFAULT_RUN_AS_USER = 1234
DEFAULT_SCRIPT_FOLDER = "deployment-scripts"

# Largest admission review body accepted
MAX_REQUEST_BODY_BYTES = 8 * 1024 * 1024

# Graceful shutdown: in-flight requests get the handler timeout plus a margin.
# Without a handler timeout the drain falls back to aiohttp's own default.
SHUTDOWN_MARGIN_SECONDS = 2.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 60.0
