#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
import os
from logging.config import dictConfig
from importlib import import_module

from quart import Quart

dictConfig({
    'version':    1,
    'formatters': {
        'default': {
            'format': '%(asctime)s:%(levelname)s:%(name)s: %(message)s',
        }
    },
    'handlers':   {
        'wsgi': {
            'class':     'logging.StreamHandler',
            'stream':    'ext://sys.stderr',
            'formatter': 'default'
        }
    },
    'root':       {
        'level':    'INFO',
        'handlers': ['wsgi']
    }
})

enable_debugging = False
if os.environ.get('ENABLE_DEBUGGING', 'false').lower() == 'true':
    enable_debugging = True


def create_app():
    # Create app
    app = Quart(__name__)

    # Register the route blueprints
    module = import_module('m3u8_proxy.api.routes_proxy_v2')
    app.register_blueprint(module.blueprint)

    proxy_log = logging.getLogger('proxy')
    app.logger.setLevel(logging.INFO)
    proxy_log.setLevel(logging.INFO)
    if enable_debugging:
        app.logger.setLevel(logging.DEBUG)
        proxy_log.setLevel(logging.DEBUG)

    return app
