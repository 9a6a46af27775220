from flask import Flask, Blueprint, jsonify
from config import Config
from models import db
from utils import brl
from cache_manager import init_cache
from views.crm import crm_bp
from views.contratos import contratos_bp
from views.financeiro import financeiro_bp
from views.funcionarios import funcionarios_bp
from security_middleware import init_security_middleware
from services.realtime import init_realtime
from data_utils.monitoring import init_monitor

# Silencia a requisição automática do Chrome/DevTools
wellknown_bp = Blueprint("wellknown", __name__)


@wellknown_bp.route("/.well-known/appspecific/com.chrome.devtools.json", methods=["GET"])
def _chrome_devtools_json():
    # 204 No Content evita poluir o log
    return ("", 204)


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Filtro de moeda BRL (exportações e templates)
    app.jinja_env.filters["brl"] = brl

    # DB
    db.init_app(app)
    with app.app_context():
        db.create_all()

    # Cache
    init_cache(app)

    # Auditoria de requisições
    init_security_middleware(app)

    # Blueprints
    app.register_blueprint(wellknown_bp)
    app.register_blueprint(crm_bp)
    app.register_blueprint(contratos_bp)
    app.register_blueprint(financeiro_bp)
    app.register_blueprint(funcionarios_bp)

    @app.route("/")
    def index():
        return jsonify({"success": True, "modules": ["crm", "contratos", "financeiro", "funcionarios"]})

    # Listener realtime (pipeline + invalidação de cache)
    init_realtime(app)

    # Verificação periódica dos contratos
    init_monitor(app)

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=int(app.config.get("PORT", 3001)), debug=True)
