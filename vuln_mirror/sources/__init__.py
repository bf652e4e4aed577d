# Feed clients and converters
