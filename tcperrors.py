'''
Exceptions raised by the exporter
'''


class TcpStateExporterError(Exception):
    pass


class SocketTableError(TcpStateExporterError):
    '''
    The kernel socket table could not be read or parsed.

    records holds whatever was parsed before the failure.
    '''
    def __init__(self, message, records=None):
        super().__init__(message)
        self.records = list(records or [])


class ConfigurationError(TcpStateExporterError):
    pass
