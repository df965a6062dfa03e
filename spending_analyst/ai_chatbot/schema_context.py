"""Fixed schema and business context handed to every SQL-generating prompt."""

DATABASE_SCHEMA_CONTEXT = """
Authoritative Database Schema (PostgreSQL, Texas state payments for 2022)

payments (~750K rows, dates 2022-01-05 .. 2022-12-04)
- key bigint PK
- "Agency_CD" bigint -> "agencyCodes"."Agency_CD"
- "CatCode" bigint -> "categoryCodes"."CatCode"
- "Appd_Fund_Num" bigint -> "applicationFundCodes"."Appd_Fund_Num"
- "Fund_Num" bigint -> "fundCodes"."Fund_Num"
- "Appropriation_Number" bigint -> "appropriationNameCodes"."Appropriation_Number"
- "Payee_id" bigint -> "payeeCodes"."Payee_id"
- "Comptroller_Object_Num" bigint -> "comptrollerCodes"."Comptroller_Object_Num"
- "Amount" bigint, stored in CENTS
- "date" date

Lookup tables (all codes are integers, joins need no casts)
- "agencyCodes": "Agency_CD", "Agency_Name" (193 agencies)
- "categoryCodes": "CatCode", "Category" (21 categories)
- "applicationFundCodes": "Appd_Fund_Num", "Appd_Fund_Num_Name" (496 funds)
- "appropriationNameCodes": "Appropriation_Number", "Appropriation_Name" (5,156 appropriations)
- "fundCodes": "Fund_Num", "Fund_Description" (2,533 funds)
- "payeeCodes": "Payee_id", "Payee_Name" (2.2M payees)
- "comptrollerCodes": "Comptroller_Object_Num", "Comptroller_Object_Name" (378 objects)

Join paths
- JOIN "agencyCodes" a ON p."Agency_CD" = a."Agency_CD"
- JOIN "categoryCodes" c ON p."CatCode" = c."CatCode"
- JOIN "fundCodes" f ON p."Fund_Num" = f."Fund_Num"
- JOIN "applicationFundCodes" af ON p."Appd_Fund_Num" = af."Appd_Fund_Num"
- JOIN "appropriationNameCodes" ap ON p."Appropriation_Number" = ap."Appropriation_Number"
- JOIN "payeeCodes" pc ON p."Payee_id" = pc."Payee_id"
- JOIN "comptrollerCodes" comp ON p."Comptroller_Object_Num" = comp."Comptroller_Object_Num"

PostgreSQL rules
- Every table and column identifier MUST be double quoted: "payments", "Agency_Name"
- Only SELECT statements, one statement, no trailing semicolon
- Filter dates with literal 2022 bounds ('2022-01-01' .. '2022-12-31'), never CURRENT_DATE or NOW()
- DATE_TRUNC('month' | 'quarter' | 'week', p."date") for time buckets, ORDER BY the bucket for time series
- ILIKE for case-insensitive text matching; prefer resolved codes with IN (...) when given
"""

BUSINESS_CONTEXT = """
Texas government spending context

Largest agencies: Health and Human Services Commission (public assistance),
Texas Department of Transportation, Teacher Retirement System, Texas Education
Agency, Department of Public Safety.

Major categories: Public Assistance Payments (largest, $5.2B+), Salaries and
Wages, Intergovernmental Payments, Capital Outlay, Other Expenditures.

Seasonality: March and July are peak months ($1.7B+ each); fiscal year-end
spending shows up in late summer.

Payees: "Confidential" rows are individual benefit recipients; other payees are
state employees, contractors, other government entities and banks.
"""
