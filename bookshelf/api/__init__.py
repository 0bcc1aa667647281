"""JSON API blueprints."""


def register_api(app):
    from .bin import bin_api
    from .series import series_api
    from .maintenance import maintenance_api

    app.register_blueprint(bin_api)
    app.register_blueprint(series_api)
    app.register_blueprint(maintenance_api)
