"""Names of the persisted key-value entries."""

HISTORY_KEY = "clipboardHistory"
TEMPLATES_KEY = "templates"
SETTINGS_KEY = "settings"
DEVICE_ID_KEY = "deviceId"
ENCRYPTION_KEY = "encryptionKey"
SYNC_ENABLED_KEY = "cloudSyncEnabled"
LAST_SYNC_KEY = "lastSyncTime"
