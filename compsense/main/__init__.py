from flask import Blueprint

bp = Blueprint('main', __name__, url_prefix='/api')

# Import routes and forms at the bottom
from compsense.main import routes, forms
