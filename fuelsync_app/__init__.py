import json
import logging
import os
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from functools import wraps

from flask import (
    Flask,
    Response,
    flash,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from flask_login import (
    LoginManager,
    UserMixin,
    current_user,
    login_required,
    login_user,
    logout_user,
)

from . import calculations, reports, services
from .api import init_app as init_api_app
from .cache import QueryCache
from .exceptions import ApiError, AuthExpiredError, ValidationError

_logger = logging.getLogger(__name__)

ROLE_HIERARCHY = {
    "super_admin": 100,
    "owner": 75,
    "manager": 50,
    "employee": 25,
}

EMPLOYEE_ROLES = {"employee", "manager"}
FUEL_TYPES = ["petrol", "diesel", "premium_petrol", "premium_diesel", "cng", "lpg"]
EQUIPMENT_STATUSES = ["active", "inactive", "maintenance"]
CLOSING_PREFIX = "closing_"


class AppUser(UserMixin):
    def __init__(self, data):
        self.id = str(data.get("id"))
        self.email = data.get("email")
        self.name = data.get("name") or data.get("email") or "User"
        self.role = data.get("role") or "employee"
        self.station_id = data.get("stationId")
        self.stations = data.get("stations") or []
        self._is_active = data.get("isActive", True) is not False

    @property
    def is_active(self):
        return self._is_active

    @property
    def rank(self):
        return ROLE_HIERARCHY.get(self.role, 0)

    def has_role(self, minimum_role):
        return self.rank >= ROLE_HIERARCHY[minimum_role]


def role_required(minimum_role):
    def decorator(view):
        @wraps(view)
        @login_required
        def wrapped(*args, **kwargs):
            if not current_user.has_role(minimum_role):
                flash("Access denied: insufficient permissions.", "danger")
                return redirect(_home_url(current_user))
            return view(*args, **kwargs)

        return wrapped

    return decorator


def _home_url(user):
    if user.is_authenticated and not user.has_role("manager"):
        return url_for("quick_entry")
    return url_for("dashboard")


def _form_text(name):
    return request.form.get(name, "").strip()


def _parse_decimal(raw_value):
    raw_value = (raw_value or "").strip()
    if raw_value == "":
        return None
    try:
        value = Decimal(raw_value)
    except InvalidOperation:
        return None
    if not calculations.is_representable(value):
        return None
    return value


def _parse_date(raw_value, default=None):
    raw_value = (raw_value or "").strip()
    try:
        return datetime.strptime(raw_value, "%Y-%m-%d").date().isoformat()
    except ValueError:
        return (default or date.today()).isoformat()


def _station_form():
    return {
        "name": _form_text("name"),
        "code": _form_text("code"),
        "address": _form_text("address") or None,
        "city": _form_text("city") or None,
        "state": _form_text("state") or None,
        "pincode": _form_text("pincode") or None,
        "phone": _form_text("phone") or None,
        "gstNumber": _form_text("gst_number") or None,
    }


def _flash_api_error(exc, fallback):
    message = exc.message or fallback
    if exc.details:
        parts = []
        for detail in exc.details:
            if isinstance(detail, dict):
                parts.append(f"{detail.get('field', '')}: {detail.get('message', '')}".strip(": "))
            else:
                parts.append(str(detail))
        message = f"{message} ({'; '.join(parts)})"
    flash(message, "danger")


def create_app(test_config=None, http_session=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("FUELSYNC_SECRET_KEY", "dev"),
        API_BASE_URL=os.environ.get("FUELSYNC_API_BASE_URL", "http://localhost:3001/api/v1"),
        API_TIMEOUT=float(os.environ.get("FUELSYNC_API_TIMEOUT", "10")),
        CACHE_TTL=60,
        LOG_LEVEL=os.environ.get("FUELSYNC_LOG_LEVEL", "INFO"),
        CURRENCY_SYMBOL="₹",
        PERMANENT_SESSION_LIFETIME=timedelta(minutes=30),
    )

    @app.before_request
    def make_session_permanent():
        session.permanent = True

    if test_config is None:
        app.config.from_pyfile("config.py", silent=True)
    else:
        app.config.update(test_config)

    logging.getLogger(__name__).setLevel(app.config["LOG_LEVEL"])

    if http_session is not None:
        app.extensions["fuelsync_http_session"] = http_session
    app.extensions["fuelsync_cache"] = QueryCache(ttl=app.config["CACHE_TTL"])
    init_api_app(app)

    login_manager = LoginManager()
    login_manager.login_view = "login"
    login_manager.login_message_category = "warning"
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        user_data = session.get("api_user")
        if not user_data or str(user_data.get("id")) != str(user_id):
            return None
        if not session.get("api_token"):
            return None
        return AppUser(user_data)

    @app.template_filter("money")
    def money_filter(value):
        amount = calculations.to_number(value)
        return f"{app.config['CURRENCY_SYMBOL']}{amount:,.2f}"

    @app.template_filter("litres")
    def litres_filter(value):
        return f"{calculations.to_number(value):,.2f} L"

    @app.context_processor
    def inject_globals():
        return {"currency_symbol": app.config["CURRENCY_SYMBOL"], "today": date.today().isoformat()}

    @app.errorhandler(AuthExpiredError)
    def handle_auth_expired(exc):
        _logger.info("[AUTH] token rejected on %s, signing out", exc.endpoint)
        logout_user()
        session.pop("api_token", None)
        session.pop("api_user", None)
        flash("Your session has expired. Please log in again.", "warning")
        return redirect(url_for("login"))

    @app.errorhandler(ApiError)
    def handle_api_error(exc):
        _logger.warning("[API] unhandled error on %s: %s", request.path, exc.message)
        return (
            render_template(
                "error.html",
                page_title="Error",
                active_menu="",
                error_message=exc.message,
                status_code=exc.status_code,
            ),
            502 if exc.status_code in (0, 500) else exc.status_code,
        )

    @app.before_request
    def require_login_for_app_pages():
        allowed_endpoints = {
            "login",
            "static",
        }
        if request.endpoint in allowed_endpoints:
            return None
        if request.endpoint is None:
            return None
        if current_user.is_authenticated:
            return None
        return redirect(url_for("login"))

    @app.route("/login", methods=["GET", "POST"])
    def login():
        if current_user.is_authenticated:
            return redirect(_home_url(current_user))

        if request.method == "POST":
            email = request.form.get("email", "").strip()
            password = request.form.get("password", "")

            if not email or not password:
                return render_template(
                    "login.html",
                    page_title="Login",
                    active_menu="",
                    error_message="Email and password are required.",
                )

            try:
                token, user_data = services.login(email, password)
            except AuthExpiredError:
                token, user_data = None, None
            except ApiError as exc:
                _logger.warning("[AUTH] login failed for %s: %s", email, exc.message)
                return render_template(
                    "login.html",
                    page_title="Login",
                    active_menu="",
                    error_message=exc.message,
                )

            if token and user_data and user_data.get("id") is not None:
                session["api_token"] = token
                session["api_user"] = user_data
                user = AppUser(user_data)
                if user.is_active:
                    login_user(user, remember=True)
                    _logger.info("[AUTH] %s signed in as %s", user.email, user.role)
                    return redirect(_home_url(user))
                session.pop("api_token", None)
                session.pop("api_user", None)

            return render_template(
                "login.html",
                page_title="Login",
                active_menu="",
                error_message="Invalid email or password.",
            )

        return render_template(
            "login.html",
            page_title="Login",
            active_menu="",
            error_message="",
        )

    @app.post("/logout")
    @login_required
    def logout():
        try:
            services.logout()
        except ApiError as exc:
            _logger.info("[AUTH] backend logout failed: %s", exc.message)
        logout_user()
        session.pop("api_token", None)
        session.pop("api_user", None)
        flash("You have been logged out successfully", "info")
        return redirect(url_for("login"))

    @app.route("/")
    def index():
        if not current_user.is_authenticated:
            return redirect(url_for("login"))
        return redirect(_home_url(current_user))

    @app.route("/dashboard")
    @role_required("manager")
    def dashboard():
        stats = services.owner_stats()
        stations = services.list_stations()

        start_date, end_date = reports.date_range(7)
        try:
            analytics = services.owner_analytics(start_date, end_date)
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _logger.warning("[API] dashboard analytics unavailable: %s", exc.message)
            analytics = {}

        overview = analytics.get("overview") or {}
        charts = reports.analytics_charts(analytics)
        daily = analytics.get("dailyTrend") or []
        day_trend = None
        if len(daily) >= 2:
            day_trend = reports.trend(daily[-1].get("sales"), daily[-2].get("sales"))

        return render_template(
            "index.html",
            page_title="Dashboard",
            active_menu="Dashboard",
            stats=stats,
            stations=stations,
            overview=overview,
            day_trend=day_trend,
            sales_growth=reports.growth_badge(overview.get("salesGrowth")),
            chart_labels=charts["trend_labels"],
            chart_sales=charts["trend_sales"],
            chart_quantity=charts["trend_quantity"],
        )

    @app.route("/stations")
    @role_required("manager")
    def stations_page():
        search_query = request.args.get("q", "").strip()
        stations = services.list_stations()

        if search_query:
            needle = search_query.lower()
            stations = [
                station
                for station in stations
                if any(
                    needle in str(station.get(field) or "").lower()
                    for field in ("name", "code", "city", "state", "address")
                )
            ]

        return render_template(
            "stations.html",
            page_title="Stations",
            active_menu="Stations",
            stations=stations,
            search_query=search_query,
        )

    @app.post("/stations/add")
    @role_required("owner")
    def add_station():
        data = _station_form()
        if not data["name"] or not data["code"]:
            flash("Station name and code are required.", "danger")
            return redirect(url_for("stations_page"))

        try:
            services.create_station(data)
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to create station")
            return redirect(url_for("stations_page"))

        flash(f"Station {data['name']} created.", "success")
        return redirect(url_for("stations_page"))

    @app.post("/stations/edit")
    @role_required("owner")
    def edit_station():
        station_id = _form_text("station_id")
        data = _station_form()
        if not station_id or not data["name"] or not data["code"]:
            flash("Station name and code are required.", "danger")
            return redirect(url_for("stations_page"))

        try:
            services.update_station(station_id, data)
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to update station")
            return redirect(url_for("stations_page"))

        flash(f"Station {data['name']} updated.", "success")
        return redirect(url_for("stations_page"))

    @app.post("/stations/delete")
    @role_required("owner")
    def delete_station():
        station_id = _form_text("station_id")
        if not station_id:
            return redirect(url_for("stations_page"))

        try:
            services.delete_station(station_id)
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to delete station")
            return redirect(url_for("stations_page"))

        flash("Station deleted.", "success")
        return redirect(url_for("stations_page"))

    @app.route("/stations/<station_id>")
    @role_required("manager")
    def station_detail(station_id):
        station = services.get_station(station_id)
        pumps = services.list_pumps(station_id)
        fuel_prices = services.list_fuel_prices(station_id)
        creditors = services.list_creditors(station_id)

        priced_types = {
            (row.get("fuelType") or row.get("fuel_type") or "").upper() for row in fuel_prices
        }
        missing_prices = sorted(
            {
                nozzle.get("fuelType")
                for nozzle in calculations.iter_nozzles(pumps)
                if nozzle.get("fuelType") and nozzle.get("fuelType").upper() not in priced_types
            }
        )

        return render_template(
            "station_detail.html",
            page_title=station.get("name") or "Station",
            active_menu="Stations",
            station=station,
            pumps=pumps,
            fuel_prices=fuel_prices,
            creditors=creditors,
            missing_prices=missing_prices,
            fuel_types=FUEL_TYPES,
            equipment_statuses=EQUIPMENT_STATUSES,
        )

    @app.post("/stations/<station_id>/pumps/add")
    @role_required("owner")
    def add_pump(station_id):
        pump_number = _form_text("pump_number")
        name = _form_text("name") or None
        status = _form_text("status") or "active"
        if status not in EQUIPMENT_STATUSES:
            status = "active"

        try:
            parsed_pump_number = int(pump_number)
        except ValueError:
            flash("Pump number must be a whole number.", "danger")
            return redirect(url_for("station_detail", station_id=station_id))

        try:
            services.create_pump(
                station_id, {"pumpNumber": parsed_pump_number, "name": name, "status": status}
            )
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to add pump")
            return redirect(url_for("station_detail", station_id=station_id))

        flash(f"Pump {parsed_pump_number} added.", "success")
        return redirect(url_for("station_detail", station_id=station_id))

    @app.post("/stations/pumps/<pump_id>/nozzles/add")
    @role_required("owner")
    def add_nozzle(pump_id):
        station_id = _form_text("station_id")
        if not station_id:
            return redirect(url_for("stations_page"))
        nozzle_number = _form_text("nozzle_number")
        fuel_type = _form_text("fuel_type").lower()
        initial_reading = _parse_decimal(request.form.get("initial_reading"))

        try:
            parsed_nozzle_number = int(nozzle_number)
        except ValueError:
            flash("Nozzle number must be a whole number.", "danger")
            return redirect(url_for("station_detail", station_id=station_id))

        if fuel_type not in FUEL_TYPES:
            flash("Select a fuel type for the nozzle.", "danger")
            return redirect(url_for("station_detail", station_id=station_id))

        try:
            services.create_nozzle(
                station_id,
                pump_id,
                {
                    "nozzleNumber": parsed_nozzle_number,
                    "fuelType": fuel_type,
                    "initialReading": float(initial_reading) if initial_reading is not None else 0.0,
                },
            )
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to add nozzle")
            return redirect(url_for("station_detail", station_id=station_id))

        flash(f"Nozzle {parsed_nozzle_number} added.", "success")
        return redirect(url_for("station_detail", station_id=station_id))

    @app.post("/stations/<station_id>/prices")
    @role_required("manager")
    def set_price(station_id):
        fuel_type = _form_text("fuel_type").lower()
        price = _parse_decimal(request.form.get("price"))
        effective_from = _parse_date(request.form.get("effective_from"))

        if fuel_type not in FUEL_TYPES or price is None or price <= 0:
            flash("Enter a fuel type and a price above zero.", "danger")
            return redirect(url_for("station_detail", station_id=station_id))

        try:
            services.set_fuel_price(station_id, fuel_type, float(price), effective_from)
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to set fuel price")
            return redirect(url_for("station_detail", station_id=station_id))

        flash(f"{fuel_type.title()} price set to {app.config['CURRENCY_SYMBOL']}{price:.2f}.", "success")
        return redirect(url_for("station_detail", station_id=station_id))

    @app.route("/employees")
    @role_required("owner")
    def employees_page():
        station_filter = request.args.get("station_id", "").strip()
        employees = services.list_employees(station_filter or None)
        stations = services.list_stations()

        return render_template(
            "employees.html",
            page_title="Employees",
            active_menu="Employees",
            employees=employees,
            stations=stations,
            station_filter=station_filter,
            roles=sorted(EMPLOYEE_ROLES),
        )

    @app.post("/employees/add")
    @role_required("owner")
    def add_employee():
        name = _form_text("name")
        email = _form_text("email")
        phone = _form_text("phone") or None
        password = request.form.get("password", "")
        role = _form_text("role") or "employee"
        station_id = _form_text("station_id")

        if role not in EMPLOYEE_ROLES:
            role = "employee"

        if not name or not email or not password or not station_id:
            flash("Name, email, password and station are required.", "danger")
            return redirect(url_for("employees_page"))

        try:
            services.create_employee(
                {
                    "name": name,
                    "email": email,
                    "phone": phone,
                    "password": password,
                    "role": role,
                    "stationId": station_id,
                }
            )
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to create employee")
            return redirect(url_for("employees_page"))

        flash(f"{name} added as {role}.", "success")
        return redirect(url_for("employees_page"))

    @app.post("/employees/edit")
    @role_required("owner")
    def edit_employee():
        employee_id = _form_text("employee_id")
        name = _form_text("name")
        email = _form_text("email")
        phone = _form_text("phone") or None
        password = request.form.get("password", "")
        role = _form_text("role") or "employee"
        station_id = _form_text("station_id")

        if role not in EMPLOYEE_ROLES:
            role = "employee"

        if not employee_id or not name or not email:
            flash("Name and email are required.", "danger")
            return redirect(url_for("employees_page"))

        data = {"name": name, "email": email, "phone": phone, "role": role}
        if station_id:
            data["stationId"] = station_id
        if password:
            data["password"] = password

        try:
            services.update_employee(employee_id, data)
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to update employee")
            return redirect(url_for("employees_page"))

        flash(f"{name} updated.", "success")
        return redirect(url_for("employees_page"))

    @app.post("/employees/delete")
    @role_required("owner")
    def delete_employee():
        employee_id = _form_text("employee_id")
        if not employee_id:
            return redirect(url_for("employees_page"))

        if employee_id == current_user.get_id():
            flash("You cannot remove your own account.", "danger")
            return redirect(url_for("employees_page"))

        try:
            services.delete_employee(employee_id)
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to remove employee")
            return redirect(url_for("employees_page"))

        flash("Employee removed.", "success")
        return redirect(url_for("employees_page"))

    @app.route("/stations/<station_id>/creditors")
    @role_required("manager")
    def creditors_page(station_id):
        station = services.get_station(station_id)
        creditors = services.list_creditors(station_id)
        selected_creditor = request.args.get("creditor_id", "").strip()
        transactions = (
            services.creditor_transactions(station_id, selected_creditor) if selected_creditor else []
        )

        return render_template(
            "creditors.html",
            page_title="Creditors",
            active_menu="Creditors",
            station=station,
            creditors=creditors,
            selected_creditor=selected_creditor,
            transactions=transactions,
        )

    @app.post("/stations/<station_id>/creditors/add")
    @role_required("manager")
    def add_creditor(station_id):
        name = _form_text("name")
        phone = _form_text("phone")
        email = _form_text("email") or None
        vehicle_number = _form_text("vehicle_number") or None
        credit_limit = _parse_decimal(request.form.get("credit_limit"))

        if not name or not phone or credit_limit is None or credit_limit < 0:
            flash("Name, phone and a valid credit limit are required.", "danger")
            return redirect(url_for("creditors_page", station_id=station_id))

        try:
            services.create_creditor(
                station_id,
                {
                    "name": name,
                    "phone": phone,
                    "email": email,
                    "creditLimit": float(credit_limit),
                    "vehicleNumber": vehicle_number,
                },
            )
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to create creditor")
            return redirect(url_for("creditors_page", station_id=station_id))

        flash("Creditor created successfully", "success")
        return redirect(url_for("creditors_page", station_id=station_id))

    @app.post("/stations/<station_id>/creditors/<creditor_id>/settle")
    @role_required("manager")
    def settle_creditor(station_id, creditor_id):
        amount = _parse_decimal(request.form.get("amount"))
        if amount is None or amount <= 0:
            flash("Enter a settlement amount above zero.", "danger")
            return redirect(url_for("creditors_page", station_id=station_id, creditor_id=creditor_id))

        data = {"amount": float(amount)}
        for field, form_name in (
            ("referenceNumber", "reference_number"),
            ("invoiceNumber", "invoice_number"),
            ("notes", "notes"),
        ):
            value = _form_text(form_name)
            if value:
                data[field] = value

        try:
            services.settle_creditor(station_id, creditor_id, data)
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to record settlement")
            return redirect(url_for("creditors_page", station_id=station_id, creditor_id=creditor_id))

        flash("Settlement recorded", "success")
        return redirect(url_for("creditors_page", station_id=station_id, creditor_id=creditor_id))

    @app.route("/credit-ledger")
    @role_required("manager")
    def credit_ledger_page():
        search_query = request.args.get("q", "").strip()
        station_filter = request.args.get("station_id", "").strip()
        ledger = services.credit_ledger(search_query, station_filter or None)
        stations = services.list_stations()

        total_outstanding = sum(
            (calculations.to_number(row.get("outstanding", row.get("currentBalance"))) for row in ledger),
            Decimal("0"),
        )

        return render_template(
            "credit_ledger.html",
            page_title="Credit Ledger",
            active_menu="Creditors",
            ledger=ledger,
            stations=stations,
            station_filter=station_filter,
            search_query=search_query,
            total_outstanding=total_outstanding,
        )

    @app.route("/stations/<station_id>/readings")
    @role_required("manager")
    def readings_page(station_id):
        default_start, default_end = reports.date_range(7)
        start_date = _parse_date(
            request.args.get("start_date"), datetime.strptime(default_start, "%Y-%m-%d").date()
        )
        end_date = _parse_date(request.args.get("end_date"))
        if start_date > end_date:
            start_date, end_date = end_date, start_date

        station = services.get_station(station_id)
        pumps = services.list_pumps(station_id)
        readings = services.list_readings(station_id, start_date, end_date)

        nozzle_labels = {}
        for pump in pumps:
            for nozzle in pump.get("nozzles") or []:
                nozzle_labels[str(nozzle.get("id"))] = (
                    f"P{pump.get('pumpNumber')} / N{nozzle.get('nozzleNumber')} ({nozzle.get('fuelType')})"
                )

        total_litres = sum(
            (calculations.to_number(row.get("litresSold", row.get("deltaVolumeL"))) for row in readings),
            Decimal("0"),
        )
        total_amount = sum(
            (calculations.to_number(row.get("totalAmount", row.get("saleValue"))) for row in readings),
            Decimal("0"),
        )

        return render_template(
            "readings.html",
            page_title="Readings",
            active_menu="Stations",
            station=station,
            pumps=pumps,
            readings=readings,
            nozzle_labels=nozzle_labels,
            start_date=start_date,
            end_date=end_date,
            total_litres=total_litres,
            total_amount=total_amount,
        )

    @app.post("/stations/<station_id>/readings/add")
    @role_required("manager")
    def add_reading(station_id):
        nozzle_id = _form_text("nozzle_id")
        reading_value = _parse_decimal(request.form.get("reading_value"))
        reading_date = _parse_date(request.form.get("reading_date"))
        notes = _form_text("notes")

        if not nozzle_id or reading_value is None:
            flash("Select a nozzle and enter a reading.", "danger")
            return redirect(url_for("readings_page", station_id=station_id))

        pumps = services.list_pumps(station_id)
        nozzle = next(
            (n for n in calculations.iter_nozzles(pumps) if str(n.get("id")) == nozzle_id), None
        )
        if nozzle is None:
            flash("Unknown nozzle.", "danger")
            return redirect(url_for("readings_page", station_id=station_id))

        last_readings = services.latest_readings(station_id, [nozzle_id])
        opening = calculations.compare_value(nozzle, last_readings)
        if not calculations.is_valid_reading(reading_value, opening):
            flash(f"Incorrect reading: must be above {opening:.2f}.", "danger")
            return redirect(url_for("readings_page", station_id=station_id))

        try:
            services.create_reading(
                station_id,
                {
                    "nozzleId": nozzle_id,
                    "readingValue": float(reading_value),
                    "readingDate": reading_date,
                    "notes": notes,
                },
            )
        except AuthExpiredError:
            raise
        except ApiError as exc:
            _flash_api_error(exc, "Failed to record reading")
            return redirect(url_for("readings_page", station_id=station_id))

        flash("Reading recorded.", "success")
        return redirect(url_for("readings_page", station_id=station_id))

    def _quick_entry_state(station_id):
        readings = {}
        if request.method == "POST":
            for key, value in request.form.items():
                if key.startswith(CLOSING_PREFIX):
                    readings[key[len(CLOSING_PREFIX):]] = value.strip()

        credits = []
        creditor_ids = request.form.getlist("credit_creditor_id")
        credit_amounts = request.form.getlist("credit_amount")
        for creditor_id, raw_amount in zip(creditor_ids, credit_amounts):
            creditor_id = creditor_id.strip()
            raw_amount = raw_amount.strip()
            if not creditor_id and not raw_amount:
                continue
            credits.append({"creditorId": creditor_id, "amount": calculations.to_number(raw_amount)})

        return {
            "station_id": station_id,
            "reading_date": _parse_date(request.form.get("reading_date") or request.args.get("date")),
            "readings": readings,
            "online": calculations.to_number(request.form.get("online")),
            "raw_cash": _form_text("cash"),
            "credits": credits,
        }

    @app.route("/quick-entry", methods=["GET", "POST"])
    @role_required("employee")
    def quick_entry():
        stations = services.list_stations()
        station_id = (
            request.form.get("station_id") or request.args.get("station_id") or ""
        ).strip()
        if not station_id and stations:
            station_id = str(stations[0].get("id"))

        pumps = services.list_pumps(station_id) if station_id else []
        fuel_prices = services.list_fuel_prices(station_id) if station_id else []
        creditors = services.list_creditors(station_id)
        nozzle_ids = [nozzle.get("id") for nozzle in calculations.iter_nozzles(pumps)]
        last_readings = services.latest_readings(station_id, nozzle_ids) if station_id else {}

        state = _quick_entry_state(station_id)
        summary = calculations.sale_summary(state["readings"], pumps, fuel_prices, last_readings)

        if state["raw_cash"] == "":
            cash = calculations.auto_cash(summary.total_sale_value, state["online"], state["credits"])
        else:
            cash = calculations.to_number(state["raw_cash"])

        action = request.form.get("action", "preview")
        if request.method == "POST" and action == "submit":
            try:
                calculations.check_quick_entry(
                    state["readings"],
                    pumps,
                    fuel_prices,
                    cash,
                    state["online"],
                    state["credits"],
                    creditors,
                    last_readings,
                    currency=app.config["CURRENCY_SYMBOL"],
                )
            except ValidationError as exc:
                for message in exc.messages:
                    flash(message, "danger")
            else:
                payload = calculations.build_quick_entry_payload(
                    station_id,
                    state["reading_date"],
                    state["readings"],
                    fuel_prices,
                    cash,
                    state["online"],
                    state["credits"],
                )
                try:
                    services.submit_quick_entry(payload)
                except AuthExpiredError:
                    raise
                except ApiError as exc:
                    _logger.warning("[QUICK_ENTRY] station %s rejected: %s", station_id, exc.message)
                    _flash_api_error(exc, "Failed to save readings")
                else:
                    _logger.info(
                        "[QUICK_ENTRY] station %s: %d reading(s), sale value %.2f",
                        station_id,
                        len(payload["readings"]),
                        summary.total_sale_value,
                    )
                    flash(
                        f"{len(payload['readings'])} reading(s) saved with transaction. "
                        f"Sale value: {app.config['CURRENCY_SYMBOL']}{summary.total_sale_value:.2f}",
                        "success",
                    )
                    return redirect(url_for("quick_entry", station_id=station_id))

        splits = []
        if summary.lines and summary.total_sale_value > 0:
            splits = calculations.distribute_payment(
                [line.sale_value for line in summary.lines], cash, state["online"], state["credits"]
            )

        priced_types = {
            (row.get("fuelType") or row.get("fuel_type") or "").upper() for row in fuel_prices
        }
        nozzle_rows = []
        for pump in pumps:
            for nozzle in pump.get("nozzles") or []:
                fuel_type = nozzle.get("fuelType") or ""
                nozzle_rows.append(
                    {
                        "pump": pump,
                        "nozzle": nozzle,
                        "opening": calculations.compare_value(nozzle, last_readings),
                        "price": calculations.find_price(fuel_prices, fuel_type),
                        "has_price": fuel_type.upper() in priced_types,
                        "enabled": (nozzle.get("status") or "active") == "active"
                        and fuel_type.upper() in priced_types,
                        "value": state["readings"].get(str(nozzle.get("id")), ""),
                    }
                )

        return render_template(
            "quick_entry.html",
            page_title="Quick Entry",
            active_menu="Quick Entry",
            stations=stations,
            station_id=station_id,
            nozzle_rows=nozzle_rows,
            creditors=creditors,
            state=state,
            cash=cash,
            summary=summary,
            lines_with_splits=list(zip(summary.lines, splits)) if splits else [],
            credit_total=calculations.credit_total(state["credits"]),
        )

    @app.route("/settlements")
    @role_required("manager")
    def settlements_page():
        stations = services.list_stations()
        return render_template(
            "settlements.html",
            page_title="Daily Settlement",
            active_menu="Settlements",
            stations=stations,
        )

    @app.route("/stations/<station_id>/settlement", methods=["GET", "POST"])
    @role_required("manager")
    def daily_settlement(station_id):
        settlement_date = _parse_date(request.values.get("date"))
        station = services.get_station(station_id)
        sales = services.daily_sales(station_id, settlement_date)
        settlement_readings = services.readings_for_settlement(station_id, settlement_date) or {}
        previous_settlements = services.list_settlements(station_id)

        unlinked = (settlement_readings.get("unlinked") or {}).get("readings") or []
        linked = (settlement_readings.get("linked") or {}).get("readings") or []

        selected_ids = [value for value in request.form.getlist("reading_ids") if value.strip()]
        actual_cash = calculations.to_number(request.form.get("actual_cash"))
        actual_online = calculations.to_number(request.form.get("actual_online"))
        actual_credit = calculations.to_number(request.form.get("actual_credit"))
        notes = _form_text("notes")
        is_final = request.method == "GET" or request.form.get("is_final") == "on"

        totals = calculations.selected_totals(unlinked + linked, selected_ids)

        if request.method == "POST" and request.form.get("action") == "submit":
            try:
                calculations.check_settlement(sales, selected_ids)
            except ValidationError as exc:
                for message in exc.messages:
                    flash(message, "danger")
            else:
                payload = calculations.build_settlement_payload(
                    station_id,
                    settlement_date,
                    selected_ids,
                    totals,
                    actual_cash,
                    actual_online,
                    actual_credit,
                    notes,
                    is_final,
                )
                try:
                    services.submit_settlement(station_id, payload)
                except AuthExpiredError:
                    raise
                except ApiError as exc:
                    _logger.warning("[SETTLEMENT] station %s rejected: %s", station_id, exc.message)
                    _flash_api_error(exc, "Failed to save settlement")
                else:
                    _logger.info(
                        "[SETTLEMENT] station %s on %s: %d reading(s), expected %.2f, actual %.2f",
                        station_id,
                        settlement_date,
                        len(selected_ids),
                        totals["cash"],
                        actual_cash,
                    )
                    flash("Daily sales settlement recorded successfully", "success")
                    return redirect(
                        url_for("daily_settlement", station_id=station_id, date=settlement_date)
                    )

        show_variance = bool(selected_ids) and actual_cash > 0
        variance = calculations.cash_variance(totals["cash"], actual_cash)

        return render_template(
            "settlement.html",
            page_title="Daily Settlement",
            active_menu="Settlements",
            station=station,
            station_id=station_id,
            settlement_date=settlement_date,
            sales=sales or {},
            unlinked=unlinked,
            linked=linked,
            selected_ids=set(selected_ids),
            totals=totals,
            actual_cash=actual_cash,
            actual_online=actual_online,
            actual_credit=actual_credit,
            notes=notes,
            is_final=is_final,
            show_variance=show_variance,
            variance=variance,
            cash_match=calculations.is_cash_match(totals["cash"], actual_cash),
            previous_settlements=previous_settlements,
        )

    @app.route("/reports/daily-sales")
    @role_required("manager")
    def daily_sales_report():
        report_date = _parse_date(request.args.get("date"))
        selected_station = request.args.get("station_id", "").strip()

        normalized = reports.normalize_sales_rows(services.sales_report(report_date, report_date))
        station_options = [
            {"id": str(row.get("stationId")), "name": row.get("stationName")} for row in normalized
        ]
        report = None
        if normalized:
            report = next(
                (row for row in normalized if str(row.get("stationId")) == selected_station),
                normalized[0],
            )
        breakdown = reports.fuel_breakdown(report)

        if request.args.get("format") == "csv":
            content = reports.to_csv(
                breakdown,
                [
                    ("name", "Fuel Type", None),
                    ("liters", "Litres", lambda value: f"{value:.2f}"),
                    ("value", "Sale Value", lambda value: f"{value:.2f}"),
                    ("count", "Readings", None),
                    ("percentage", "Share %", lambda value: f"{value:.1f}"),
                ],
            )
            filename = f"daily-sales-{report_date}.csv"
            return Response(
                content,
                mimetype="text/csv",
                headers={"Content-Disposition": f"attachment; filename={filename}"},
            )

        return render_template(
            "daily_sales.html",
            page_title="Daily Sales Report",
            active_menu="Reports",
            report_date=report_date,
            report=report,
            station_options=station_options,
            selected_station=str(report.get("stationId")) if report else "",
            breakdown=breakdown,
            chart_labels=json.dumps([row["name"] for row in breakdown]),
            chart_values=json.dumps([row["value"] for row in breakdown]),
        )

    @app.route("/analytics")
    @role_required("manager")
    def analytics_page():
        preset = request.args.get("range", "").strip()
        if preset in {"7", "30", "90"}:
            start_date, end_date = reports.date_range(int(preset))
        else:
            default_start, default_end = reports.date_range(30)
            start_date = _parse_date(
                request.args.get("start_date"), datetime.strptime(default_start, "%Y-%m-%d").date()
            )
            end_date = _parse_date(request.args.get("end_date"))

        if start_date > end_date:
            start_date, end_date = end_date, start_date

        selected_station = request.args.get("station_id", "all").strip() or "all"
        analytics = services.owner_analytics(
            start_date, end_date, None if selected_station == "all" else selected_station
        )
        overview = analytics.get("overview") or {}

        return render_template(
            "analytics.html",
            page_title="Analytics",
            active_menu="Analytics",
            stations=services.list_stations(),
            selected_station=selected_station,
            start_date=start_date,
            end_date=end_date,
            overview=overview,
            sales_growth=reports.growth_badge(overview.get("salesGrowth")),
            quantity_growth=reports.growth_badge(overview.get("quantityGrowth")),
            top_stations=analytics.get("topPerformingStations") or [],
            employee_performance=analytics.get("employeePerformance") or [],
            **reports.analytics_charts(analytics),
        )

    return app
