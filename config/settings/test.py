# config/settings/test.py

from .base import *

# === TESTES ===

DEBUG = False

ALLOWED_HOSTS = ['testserver', 'localhost']

SECRET_KEY = 'test-secret-key'

# Banco em memória
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

# Sem Redis nos testes
CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'kanban-test-cache',
    }
}

CHANNEL_LAYERS = {
    'default': {
        'BACKEND': 'channels.layers.InMemoryChannelLayer'
    }
}

SESSION_ENGINE = 'django.contrib.sessions.backends.db'

STORAGES['staticfiles'] = {
    'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
}

# Hash rápido para criar usuários nos testes
PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

# Desabilitar logs em arquivo nos testes
LOGGING['handlers'].pop('file')
LOGGING['root']['handlers'] = ['console']
LOGGING['loggers']['django']['handlers'] = ['console']
LOGGING['loggers']['apps']['handlers'] = ['console']
LOGGING['handlers']['console']['level'] = 'WARNING'

# Keep-alive curto para os testes de SSE
KANBAN_SSE_KEEPALIVE_SECONDS = 1
