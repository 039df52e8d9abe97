# Utils package: calendar, exceptions, env flags, logging and retry helpers.
