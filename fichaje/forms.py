"""WTForms form classes."""

from __future__ import annotations

from flask_wtf import FlaskForm
from wtforms import BooleanField, IntegerField, PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length, NumberRange, Optional


class LoginForm(FlaskForm):
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)], filters=[lambda value: value.strip() if value else value])
    password = PasswordField("Password", validators=[DataRequired(), Length(min=8, max=255)])
    remember = BooleanField("Remember me")


class MonthlyExportForm(FlaskForm):
    class Meta:
        csrf = False

    user_id = StringField("Empleado", validators=[DataRequired()])
    year = IntegerField("Año", validators=[DataRequired(), NumberRange(min=2000, max=2100)])
    month = IntegerField("Mes", validators=[DataRequired(), NumberRange(min=1, max=12)])
    separator = StringField("Separador", validators=[Optional(), Length(max=1)])
