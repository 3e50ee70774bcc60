version_prefix = "/api"
cur_version = "1.0.0"
