import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    RESULTS_FOLDER = os.environ.get('RESULTS_FOLDER') or 'temp_files'
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max file size
    ALLOWED_EXTENSIONS = {'pdf', 'png', 'jpg', 'jpeg'}

    # Remote analyzer settings
    ANALYZER_BASE_URL = os.environ.get('ANALYZER_BASE_URL') or 'http://localhost:8000'
    ANALYZER_TIMEOUT = float(os.environ.get('ANALYZER_TIMEOUT') or 120)
    DEFAULT_METHODOLOGY = os.environ.get('DEFAULT_METHODOLOGY') or 'auto'

    # Stored results older than this many seconds are swept on the next store
    RESULT_MAX_AGE = int(os.environ.get('RESULT_MAX_AGE') or 3600)
