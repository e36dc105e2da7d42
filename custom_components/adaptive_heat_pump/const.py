"""Constants for the Adaptive Heat Pump integration."""

from __future__ import annotations

DOMAIN = "adaptive_heat_pump"

# Entity mapping for the Setpoint I/O adapter.
CONF_INDOOR_TEMP = "indoor_temp_entity"
CONF_TARGET_INDOOR_TEMP = "target_indoor_temp_entity"
CONF_SETPOINT_ENTITY = "setpoint_entity"
CONF_OUTDOOR_TEMP = "outdoor_temp_entity"
CONF_SUPPLY_TEMP = "supply_temp_entity"
CONF_COMPRESSOR_FREQUENCY = "compressor_frequency_entity"
CONF_COP = "cop_entity"
CONF_DAILY_COP = "daily_cop_entity"
CONF_HUMIDITY = "humidity_entity"
CONF_WIND_SPEED = "wind_speed_entity"

CONF_CONTROL_INTERVAL_SECONDS = "control_interval_seconds"
CONF_EXECUTION_MODE = "execution_mode"
CONF_MONITORING_MODE = "monitoring_mode"
CONF_EFFICIENCY_ENABLED = "efficiency_optimizer_enabled"
CONF_PRICE_ENABLED = "price_optimizer_enabled"
CONF_WIND_ENABLED = "wind_correction_enabled"
CONF_KP = "pi_kp"
CONF_KI = "pi_ki"
CONF_DEADBAND = "pi_deadband"
CONF_PRIORITY_COMFORT = "priority_comfort"
CONF_PRIORITY_EFFICIENCY = "priority_efficiency"
CONF_PRIORITY_COST = "priority_cost"
CONF_PRIORITY_THERMAL = "priority_thermal"
CONF_MIN_ACCEPTABLE_COP = "min_acceptable_cop"
CONF_TARGET_COP = "target_cop"
CONF_COP_STRATEGY = "cop_strategy"
CONF_PRICE_VERY_LOW = "price_threshold_very_low"
CONF_PRICE_LOW = "price_threshold_low"
CONF_PRICE_NORMAL = "price_threshold_normal"
CONF_PRICE_HIGH = "price_threshold_high"
CONF_MAX_PREHEAT_OFFSET = "max_preheat_offset"
CONF_MAX_REDUCE_OFFSET = "max_reduce_offset"
CONF_PRICE_LOOKAHEAD_HOURS = "price_lookahead_hours"
CONF_PRICE_MODE = "price_mode"
CONF_VAT_PERCENTAGE = "vat_percentage"
CONF_STORAGE_FEE = "storage_fee"
CONF_ENERGY_TAX = "energy_tax"
CONF_MIN_WAIT_MINUTES = "min_wait_minutes"
CONF_SETPOINT_MIN = "setpoint_min"
CONF_SETPOINT_MAX = "setpoint_max"
CONF_WIND_MANUAL_ALPHA = "wind_manual_alpha"
CONF_WIND_MAX_CORRECTION = "wind_max_correction"

EXECUTION_MODE_AUTOMATIC = "automatic"
EXECUTION_MODE_RECOMMEND = "recommend"
EXECUTION_MODES = (EXECUTION_MODE_AUTOMATIC, EXECUTION_MODE_RECOMMEND)

STRATEGY_CONSERVATIVE = "conservative"
STRATEGY_BALANCED = "balanced"
STRATEGY_AGGRESSIVE = "aggressive"
COP_STRATEGIES = (STRATEGY_CONSERVATIVE, STRATEGY_BALANCED, STRATEGY_AGGRESSIVE)

PRICE_MODE_MARKET = "market"
PRICE_MODE_MARKET_PLUS = "market_plus"
PRICE_MODE_ALL_IN = "all_in"
PRICE_MODES = (PRICE_MODE_MARKET, PRICE_MODE_MARKET_PLUS, PRICE_MODE_ALL_IN)

DEFAULT_CONTROL_INTERVAL_SECONDS = 300
DEFAULT_EXECUTION_MODE = EXECUTION_MODE_AUTOMATIC
DEFAULT_MONITORING_MODE = False
DEFAULT_EFFICIENCY_ENABLED = True
DEFAULT_PRICE_ENABLED = True
DEFAULT_WIND_ENABLED = False
DEFAULT_KP = 3.0
DEFAULT_KI = 1.5
DEFAULT_DEADBAND = 0.3
DEFAULT_PRIORITY_COMFORT = 0.60
DEFAULT_PRIORITY_EFFICIENCY = 0.25
DEFAULT_PRIORITY_COST = 0.15
DEFAULT_PRIORITY_THERMAL = 0.0
DEFAULT_MIN_ACCEPTABLE_COP = 2.5
DEFAULT_TARGET_COP = 3.5
DEFAULT_COP_STRATEGY = STRATEGY_BALANCED
DEFAULT_PRICE_VERY_LOW = 0.10
DEFAULT_PRICE_LOW = 0.15
DEFAULT_PRICE_NORMAL = 0.25
DEFAULT_PRICE_HIGH = 0.35
DEFAULT_MAX_PREHEAT_OFFSET = 1.5
DEFAULT_MAX_REDUCE_OFFSET = 1.0
DEFAULT_PRICE_LOOKAHEAD_HOURS = 4
DEFAULT_PRICE_MODE = PRICE_MODE_ALL_IN
DEFAULT_MIN_WAIT_MINUTES = 20
DEFAULT_SETPOINT_MIN = 25.0
DEFAULT_SETPOINT_MAX = 65.0
DEFAULT_WIND_MAX_CORRECTION = 3.0

# Indoor readings older than this are treated as missing.
INDOOR_READING_MAX_AGE_MINUTES = 10

# Logical Setpoint I/O channels.
CHANNEL_INDOOR_TEMP = "indoor_temperature"
CHANNEL_TARGET_INDOOR_TEMP = "target_indoor_temperature"
CHANNEL_SETPOINT = "setpoint"
CHANNEL_SIMULATED_SETPOINT = "simulated_setpoint"
CHANNEL_OUTDOOR_TEMP = "outdoor_temperature"
CHANNEL_SUPPLY_TEMP = "supply_temperature"
CHANNEL_COMPRESSOR_FREQUENCY = "compressor_frequency"
CHANNEL_COP = "cop"
CHANNEL_DAILY_COP = "daily_cop"
CHANNEL_HUMIDITY = "humidity"
CHANNEL_WIND_SPEED = "wind_speed"

# Persistence keys.
STORE_KEY_PI_HISTORY = "adaptive_pi_history"
STORE_KEY_LAST_ADJUSTMENT = "adaptive_last_adjustment_time"
STORE_KEY_ENABLED = "adaptive_control_enabled"
STORE_KEY_ACCUMULATED_ADJUSTMENT = "adaptive_accumulated_adjustment"
STORE_KEY_PRICE_STATE = "energy_optimizer_state"
STORE_KEY_EFFICIENCY_STATE = "cop_optimizer_state"
STORE_KEY_DEFROST_STATE = "defrost_learner_state"
STORE_KEY_WIND_ALPHA = "wind_learned_alpha"
STORE_KEY_WIND_COUNT = "wind_learning_count"

PRIORITY_LOW = "low"
PRIORITY_MEDIUM = "medium"
PRIORITY_HIGH = "high"
PRIORITY_ORDER = (PRIORITY_LOW, PRIORITY_MEDIUM, PRIORITY_HIGH)

# Services exposing the control loop's receive API.
SERVICE_SET_PRIORITIES = "set_priorities"
SERVICE_SET_PI_PARAMETERS = "set_pi_parameters"
SERVICE_RESET_PI_HISTORY = "reset_pi_history"
SERVICE_SET_EXTERNAL_PRICES = "set_external_prices"
SERVICE_SET_WIND_SPEED = "set_wind_speed"
SERVICE_RECORD_DEFROST_EVENT = "record_defrost_event"
SERVICE_SET_BUILDING_MODEL = "set_building_model"
SERVICE_RECORD_ENERGY_CONSUMPTION = "record_energy_consumption"
SERVICE_START = "start"
SERVICE_STOP = "stop"
SERVICE_RESET_DAILY_COST = "reset_daily_cost"
ATTR_ENTRY_ID = "entry_id"
