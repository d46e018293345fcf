import os
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# --- CARGAR VARIABLES DE ENTORNO ---
# Carga el archivo .env desde la raíz del proyecto
load_dotenv(BASE_DIR / '.env')


def _env_bool(name, default='False'):
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'si')


# --- SEGURIDAD ---
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-solo-para-desarrollo')
DEBUG = _env_bool('DEBUG')
ALLOWED_HOSTS = [h for h in os.getenv('ALLOWED_HOSTS', '').split(',') if h]

# -------------------------------------------------
# Apps Instaladas
# -------------------------------------------------
INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',

    'facturacion.apps.FacturacionConfig',
]

LANGUAGE_CODE = 'es-pe'
TIME_ZONE = 'America/Lima'
USE_I18N = True
USE_TZ = True

# --- Base de datos ---
DATABASE_ENGINE = os.getenv('DATABASE_ENGINE', 'django.db.backends.sqlite3')

if DATABASE_ENGINE.endswith('sqlite3'):
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': os.getenv('DATABASE_NAME', str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': os.getenv('DATABASE_NAME'),
            'USER': os.getenv('DATABASE_USER'),
            'PASSWORD': os.getenv('DATABASE_PASSWORD'),
            'HOST': os.getenv('DATABASE_HOST', 'localhost'),
            'PORT': os.getenv('DATABASE_PORT', ''),
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# --- Celery ---
CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/1')
CELERY_TASK_ALWAYS_EAGER = _env_bool('CELERY_TASK_ALWAYS_EAGER')
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TIMEZONE = TIME_ZONE

# --- SUNAT (facturación electrónica Perú) ---
SUNAT_AMBIENTE = os.getenv('SUNAT_AMBIENTE', 'beta')
SUNAT_BETA_URL = os.getenv(
    'SUNAT_BETA_URL',
    'https://e-beta.sunat.gob.pe/ol-ti-itcpfegem-beta/billService',
)
SUNAT_PRODUCCION_URL = os.getenv(
    'SUNAT_PRODUCCION_URL',
    'https://e-factura.sunat.gob.pe/ol-ti-itcpfegem/billService',
)
SUNAT_CONSULTA_CDR_URL = os.getenv(
    'SUNAT_CONSULTA_CDR_URL',
    'https://e-factura.sunat.gob.pe/ol-it-wsconscpegem/billConsultService',
)
SUNAT_USUARIO = os.getenv('SUNAT_USUARIO', '')
SUNAT_PASSWORD = os.getenv('SUNAT_PASSWORD', '')
SUNAT_TIMEOUT = float(os.getenv('SUNAT_TIMEOUT', 30))  # segundos
SUNAT_MAX_REINTENTOS = int(os.getenv('SUNAT_MAX_REINTENTOS', 3))
SUNAT_RETRY_DELAY = float(os.getenv('SUNAT_RETRY_DELAY', 1.0))  # segundos x intento
SUNAT_FORZAR_ENVIO_REAL = _env_bool('SUNAT_FORZAR_ENVIO_REAL')
SUNAT_SIMULAR = _env_bool('SUNAT_SIMULAR')
SUNAT_SSL_VERIFY = _env_bool('SUNAT_SSL_VERIFY', 'True')
SUNAT_LOTE_PAUSA = float(os.getenv('SUNAT_LOTE_PAUSA', 1.0))  # segundos entre documentos
SUNAT_CERTIFICADO_PATH = os.getenv('SUNAT_CERTIFICADO_PATH')
SUNAT_CERTIFICADO_PASSWORD = os.getenv('SUNAT_CERTIFICADO_PASSWORD')

# --- LOGGING ---
LOG_FILE = os.getenv('LOG_FILE')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'level': 'DEBUG',
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': True,
        },
        'facturacion': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
    },
}

if LOG_FILE:
    LOGGING['handlers']['file'] = {
        'level': 'INFO',
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': LOG_FILE,
        'maxBytes': 1024 * 1024 * 5,  # 5MB
        'backupCount': 5,
        'formatter': 'verbose',
    }
    for _logger in LOGGING['loggers'].values():
        _logger['handlers'].append('file')
