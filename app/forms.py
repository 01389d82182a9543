"""
CMS 表單類別

本模組包含應用程式使用的表單類別，以 Flask-WTF 與 WTForms 建構，
負責使用者輸入的驗證與清理。

包含的表單：
    - RegistrationForm：建立帳號
    - LoginForm：使用者登入
    - PostForm：發佈文章，最多附加 MAX_UPLOAD_FILES 張圖片
"""
from flask import current_app, request
from flask_wtf import FlaskForm
from wtforms import StringField, TextAreaField, SubmitField, PasswordField, MultipleFileField
from wtforms.validators import DataRequired, Length, ValidationError, Email, EqualTo, Optional
from app import images
from app.models import User
from app.services.storage_service import UploadReceiver
from app.utils import clean_text


def strip_filter(value):
    return value.strip() if isinstance(value, str) else value


class RegistrationForm(FlaskForm):
    name = StringField('Name', filters=[strip_filter], validators=[
        DataRequired(message='Please enter your name.'),
        Length(max=64)
    ])
    email = StringField('Email', filters=[strip_filter], validators=[
        DataRequired(message='Please enter a valid email address.'),
        Email(message='Please enter a valid email address.'),
        Length(max=120)
    ])
    password = PasswordField('Password', validators=[DataRequired(message='Password cannot be blank!')])
    passwordconfirm = PasswordField('Confirm Password', validators=[
        DataRequired(message='Confirmed password cannot be blank!'),
        EqualTo('password', message='Oops! Your passwords do not match.')
    ])
    submit = SubmitField('Register')

    def validate_password(self, field):
        min_length = current_app.config.get('PASSWORD_MIN_LENGTH', 8)
        max_length = current_app.config.get('PASSWORD_MAX_LENGTH', 100)
        if not min_length <= len(field.data) <= max_length:
            raise ValidationError(f'Password must be between {min_length} and {max_length} characters long.')

    def validate_name(self, field):
        if User.find_by_name(field.data):
            raise ValidationError('That name is already taken.')

    def validate_email(self, field):
        if User.find_by_email(field.data):
            raise ValidationError('That email address is already registered.')


class LoginForm(FlaskForm):
    name = StringField('Name', filters=[strip_filter], validators=[DataRequired(message='Please enter your name.')])
    password = PasswordField('Password', validators=[DataRequired(message='Password cannot be blank!')])
    submit = SubmitField('Log In')


class PostForm(FlaskForm):
    """文章表單

    圖片欄位的實際名稱來自設定 UPLOAD_FIELD，因此上傳的檔案一律由
    uploads() 從請求中讀取；images 欄位只負責標籤與錯誤訊息。
    """
    title = StringField('Title', filters=[clean_text], validators=[
        DataRequired(message='Please enter a title.'),
        Length(max=200)
    ])
    description = TextAreaField('Description', filters=[clean_text], validators=[Optional()])
    images = MultipleFileField('Images')
    submit = SubmitField('Publish')

    @staticmethod
    def upload_field_name() -> str:
        return images.settings.field_name

    def uploads(self):
        """取得以設定欄位名稱送出的非空檔案"""
        return UploadReceiver.accepted(request.files.getlist(self.upload_field_name()))

    def validate_images(self, field):
        max_files = images.settings.max_files
        if len(self.uploads()) > max_files:
            raise ValidationError(f'You can upload at most {max_files} images per post.')
