wsgi_app = "fichaje:create_app()"

bind = "0.0.0.0:8000"
workers = 1
threads = 8
worker_class = "gthread"
timeout = 60
graceful_timeout = 30
keepalive = 5
accesslog = "-"
errorlog = "-"
loglevel = "info"
