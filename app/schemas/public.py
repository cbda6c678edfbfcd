from pydantic import BaseModel

class OtpSend(BaseModel):
    email: str
    purpose: str = "SIGN_IN"

class OtpVerify(BaseModel):
    email: str
    purpose: str = "SIGN_IN"
    code: str
