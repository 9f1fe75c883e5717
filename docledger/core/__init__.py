# Core infrastructure - config, errors, logging
