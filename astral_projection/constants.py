# The name of the project
PROJECT_NAME = "AstralProjection"

# The environment variable pointing at the configuration file
CONFIG_ENV_VAR = "ASTRAL_CONFIG"

# The configuration file used when nothing else is given
DEFAULT_CONFIG_FILE = "astral.yaml"

# How often the scheduler checks whether the next run is due, in seconds
CHECK_DELAY_SECONDS = 5

# Extension of the locally tracked manifest files
MANIFEST_EXTENSION = ".json"

# Appended to the manifest mirror path to form the archive mirror path
ARCHIVE_SUFFIX = ".zip"

# The two kinds of packages a manifest can describe
MANIFEST_TYPE_SYSTEM = "system"
MANIFEST_TYPE_MODULE = "module"
MANIFEST_TYPES = (MANIFEST_TYPE_SYSTEM, MANIFEST_TYPE_MODULE)

# Default format used by the CLI: timestamp, level and category
LOG_FORMAT = "%(asctime)s | [%(levelname)s] <%(module)s> %(message)s"
